"""
Contact Form App

Relays public contact form messages to the team inbox:
- Field presence and length checks
- Sender email checks
- Optional Cloudflare Turnstile CAPTCHA
- One message per client address per cooldown window (Redis set)
- Delivery through the Mailgun API with retries
"""
