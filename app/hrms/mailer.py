"""
SMTP mail transport.

send_email() never raises. Failures are logged and reported through the (ok, detail) tuple.
"""
from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutgoingEmail:
    to: str
    subject: str
    text: str
    html: str | None = None
    attachments: list[tuple[str, bytes, str]] = field(default_factory=list)


def outbox() -> list[OutgoingEmail]:
    """Messages captured while MAIL_SUPPRESS_SEND is on (development and tests)."""
    return current_app.extensions.setdefault("mail_outbox", [])


def build_message(msg: OutgoingEmail, *, sender: str) -> MIMEMultipart:
    root = MIMEMultipart("mixed")
    root["Subject"] = msg.subject
    root["From"] = sender
    root["To"] = msg.to

    body = MIMEMultipart("alternative")
    body.attach(MIMEText(msg.text, "plain", "utf-8"))
    if msg.html:
        body.attach(MIMEText(msg.html, "html", "utf-8"))
    root.attach(body)

    for filename, data, content_type in msg.attachments:
        maintype, _, subtype = (content_type or "application/octet-stream").partition("/")
        part = MIMEBase(maintype, subtype or "octet-stream")
        part.set_payload(data)
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment", filename=filename)
        root.attach(part)
    return root


def send_email(
    to: str,
    subject: str,
    *,
    text: str,
    html: str | None = None,
    attachments: list[tuple[str, bytes, str]] | None = None,
) -> tuple[bool, str]:
    cfg = current_app.config
    msg = OutgoingEmail(to=to, subject=subject, text=text, html=html, attachments=list(attachments or []))

    if not to:
        logger.warning("Email skipped (no recipient): %s", subject)
        return False, "no recipient"

    if cfg.get("MAIL_SUPPRESS_SEND"):
        outbox().append(msg)
        logger.info("Email captured (suppressed) to=%s subject=%s", to, subject)
        return True, "suppressed"

    smtp_server = (cfg.get("SMTP_SERVER") or "").strip()
    email_from = (cfg.get("EMAIL_FROM") or "").strip()
    if not smtp_server:
        logger.error("Email not sent: SMTP_SERVER is not configured (to=%s)", to)
        return False, "SMTP server not configured"
    if not email_from:
        logger.error("Email not sent: EMAIL_FROM is not configured (to=%s)", to)
        return False, "EMAIL_FROM not configured"

    mime = build_message(msg, sender=email_from)
    try:
        with smtplib.SMTP(smtp_server, int(cfg.get("SMTP_PORT") or 587), timeout=30) as server:
            if cfg.get("SMTP_USE_TLS", True):
                server.starttls()
            username = (cfg.get("SMTP_USERNAME") or "").strip()
            password = (cfg.get("SMTP_PASSWORD") or "").strip()
            if username and password:
                server.login(username, password)
            server.send_message(mime)
    except smtplib.SMTPAuthenticationError as e:
        logger.error("SMTP authentication failed (to=%s): %s", to, e)
        return False, f"SMTP authentication failed: {e}"
    except (smtplib.SMTPException, OSError) as e:
        logger.exception("SMTP send failed (to=%s subject=%s)", to, subject)
        return False, f"SMTP error: {e}"

    logger.info("Email sent to=%s subject=%s", to, subject)
    return True, "sent"
