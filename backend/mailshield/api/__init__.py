"""
MailShield API
"""
