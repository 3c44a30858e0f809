# Outbound email for account verification and password reset codes.
# SMTP settings come from the environment; with no SMTP_HOST the message is logged instead of sent
# so local/dev and CI runs never need a mail server.
from __future__ import annotations

import logging
import os
import secrets
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from .redis_client import env_flag

logger = logging.getLogger("flatrent.mail")

SMTP_HOST = os.getenv("SMTP_HOST", "").strip()
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "").strip()
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
MAIL_FROM = os.getenv("MAIL_FROM", "no-reply@flatrent.local")


def mail_enabled() -> bool:
    return bool(SMTP_HOST)


def generate_code() -> str:
    """Random 6-digit numeric code."""
    return f"{secrets.randbelow(900000) + 100000}"


def send_email(to: str, subject: str, text: str, html: Optional[str] = None) -> bool:
    """
    Send one message. Returns True when handed to the SMTP server.

    Delivery failures are logged and reported as False; account flows let the user
    request a fresh code instead of failing the request.
    """
    if not mail_enabled():
        logger.info("mail.disabled", extra={"to": to, "subject": subject})
        return False

    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = MAIL_FROM
    message["To"] = to
    message.attach(MIMEText(text, "plain"))
    if html:
        message.attach(MIMEText(html, "html"))

    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=10) as server:
            if env_flag("SMTP_USE_TLS", "true"):
                server.starttls()
            if SMTP_USER:
                server.login(SMTP_USER, SMTP_PASSWORD)
            server.sendmail(MAIL_FROM, [to], message.as_string())
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("mail.failed", extra={"to": to, "subject": subject, "error": str(exc)})
        return False

    logger.info("mail.sent", extra={"to": to, "subject": subject})
    return True


def send_verification_code(to: str, first_name: str, code: str, minutes: int) -> bool:
    text = (
        f"Hello {first_name},\n\n"
        f"Your FlatRent verification code is {code}. It expires in {minutes} minutes.\n"
    )
    return send_email(to, "Verify your FlatRent account", text)


def send_password_reset_code(to: str, first_name: str, code: str, minutes: int) -> bool:
    text = (
        f"Hello {first_name},\n\n"
        f"Use the code {code} to reset your FlatRent password. It expires in {minutes} minutes.\n"
        "If you did not ask for a reset you can ignore this email.\n"
    )
    return send_email(to, "Reset your FlatRent password", text)
