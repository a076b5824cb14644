"""
MailShield Services

Detection layers, enrichment and the email risk pipeline.
"""
