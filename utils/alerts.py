# utils/alerts.py
import logging
import os
import smtplib
from email.message import EmailMessage

from dotenv import load_dotenv

load_dotenv()

SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASS = os.getenv("SMTP_PASS")
ALERT_EMAIL = os.getenv("ALERT_EMAIL")
FROM_EMAIL = os.getenv("FROM_EMAIL")

logger = logging.getLogger("alerts")


def alerts_configured():
    return bool(SMTP_HOST and ALERT_EMAIL and FROM_EMAIL)


def build_message(subject, body, attachments=None):
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = FROM_EMAIL
    msg["To"] = ALERT_EMAIL
    msg.set_content(body)

    for file_path in attachments or []:
        try:
            with open(file_path, "rb") as f:
                data = f.read()
        except OSError as e:
            logger.warning(f"Failed to attach {file_path}: {e}")
            continue
        msg.add_attachment(
            data,
            maintype="application",
            subtype="octet-stream",
            filename=os.path.basename(file_path),
        )
    return msg


def send_alert(subject, body, attachments=None):
    """
    Email an alert, optionally with file attachments.

    Port 465 uses implicit SSL; any other port upgrades with STARTTLS when the
    server offers it.

    Args:
        subject (str): Email subject line
        body (str): Plain-text body
        attachments (list, optional): File paths attached as octet-stream

    Returns:
        bool: True when the message was handed to the SMTP server

    Note:
        Delivery problems are logged, not raised; an alert must never break
        the run that produced it.
    """
    msg = build_message(subject, body, attachments)
    try:
        if SMTP_PORT == 465:
            with smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT) as server:
                if SMTP_USER and SMTP_PASS:
                    server.login(SMTP_USER, SMTP_PASS)
                server.send_message(msg)
                return True

        with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as server:
            server.ehlo()
            if server.has_extn("starttls"):
                server.starttls()
                server.ehlo()
            if SMTP_USER and SMTP_PASS:
                server.login(SMTP_USER, SMTP_PASS)
            server.send_message(msg)
            return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"SMTP error while sending '{subject}': {e}")
        return False
