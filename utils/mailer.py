import os
import smtplib
import ssl
from email.message import EmailMessage


def _mask_email(email: str) -> str:
    e = (email or '').strip()
    if not e or '@' not in e:
        return ''
    name, domain = e.split('@', 1)
    if len(name) <= 2:
        masked_name = name[:1] + '*'
    else:
        masked_name = name[:1] + ('*' * (len(name) - 2)) + name[-1:]
    return f'{masked_name}@{domain}'


def _smtp_settings() -> tuple[dict | None, str | None]:
    host = (os.getenv('SMTP_HOST') or '').strip()
    user = (os.getenv('SMTP_USERNAME') or '').strip()
    password = (os.getenv('SMTP_PASSWORD') or '').strip()

    if not host or not user or not password:
        return None, 'Email is not configured (SMTP_HOST/SMTP_USERNAME/SMTP_PASSWORD)'

    port_raw = (os.getenv('SMTP_PORT') or '587').strip()
    try:
        port = int(port_raw)
    except ValueError:
        port = 587

    return {
        'host': host,
        'port': port,
        'user': user,
        'password': password,
        'from_email': (os.getenv('SMTP_FROM') or user).strip(),
        'use_tls': (os.getenv('SMTP_USE_TLS') or 'true').strip().lower() in {'1', 'true', 'yes', 'on'},
    }, None


def _send(settings: dict, msg: EmailMessage) -> None:
    if settings['use_tls']:
        context = ssl.create_default_context()
        with smtplib.SMTP(host=settings['host'], port=settings['port'], timeout=20) as server:
            server.ehlo()
            server.starttls(context=context)
            server.ehlo()
            server.login(settings['user'], settings['password'])
            server.send_message(msg)
    else:
        with smtplib.SMTP(host=settings['host'], port=settings['port'], timeout=20) as server:
            server.ehlo()
            server.login(settings['user'], settings['password'])
            server.send_message(msg)


def send_welcome_email(*, to_email: str, merchant_name: str) -> tuple[bool, str | None, str | None]:
    """Welcome a customer whose loyalty account was just created.

    Env vars:
      - SMTP_HOST (required)
      - SMTP_PORT (default: 587)
      - SMTP_USERNAME (required)
      - SMTP_PASSWORD (required)
      - SMTP_FROM (default: SMTP_USERNAME)
      - WELCOME_EMAIL_SUBJECT (default: Welcome to {merchant} loyalty)
      - WELCOME_EMAIL_BODY_TEMPLATE (placeholders {merchant})
      - SMTP_USE_TLS (default: true)

    Returns:
      (success, error_message, masked_destination)
    """

    settings, err = _smtp_settings()
    if settings is None:
        return False, err, None

    to = (to_email or '').strip()
    if not to:
        return False, 'Customer email is missing', None

    merchant = (merchant_name or '').strip() or 'our shop'
    subject = (os.getenv('WELCOME_EMAIL_SUBJECT') or 'Welcome to {merchant} loyalty').replace('{merchant}', merchant)
    body_template = (
        os.getenv('WELCOME_EMAIL_BODY_TEMPLATE')
        or 'Thanks for joining the {merchant} loyalty program. Your points are waiting for you at the counter.'
    )
    body = body_template.replace('{merchant}', merchant)

    msg = EmailMessage()
    msg['From'] = settings['from_email']
    msg['To'] = to
    msg['Subject'] = subject
    msg.set_content(body)

    try:
        _send(settings, msg)
        return True, None, _mask_email(to)
    except Exception as e:
        return False, f'Failed to send email: {e}', _mask_email(to)
