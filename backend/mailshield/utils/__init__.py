"""MailShield utilities."""
