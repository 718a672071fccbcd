"""
auth/mailer.py -- Delivery of account confirmation emails.

Two implementations share one method, send_confirmation():
  SMTPMailer -- opens an smtplib session per message (optionally STARTTLS
                and login) and sends a plain-text confirmation link.
  LogMailer  -- development fallback used when SMTP_HOST is empty. Logs the
                recipient only; the link is never written to the log.

build_mailer() picks one from settings. Both are synchronous; the worker
calls them through asyncio.to_thread() so SMTP latency never stalls the
event loop.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("authorization.mailer")

_SUBJECT = "Confirm your account"


class Mailer(Protocol):
    def send_confirmation(self, to: str, first_name: str, token: str) -> None: ...


def confirmation_message(sender: str, to: str, first_name: str, link: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = _SUBJECT
    msg["From"] = sender
    msg["To"] = to
    msg.set_content(
        f"Hi {first_name},\n\n"
        "Thanks for signing up. Please confirm your email address by opening the link below:\n\n"
        f"{link}\n\n"
        "If you did not create an account, you can ignore this message.\n"
    )
    return msg


class SMTPMailer:
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        confirm_url_template: str,
        username: str = "",
        password: str = "",
        starttls: bool = False,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._confirm_url_template = confirm_url_template
        self._username = username
        self._password = password
        self._starttls = starttls

    def send_confirmation(self, to: str, first_name: str, token: str) -> None:
        link = self._confirm_url_template.format(token=token)
        msg = confirmation_message(self._sender, to, first_name, link)
        with smtplib.SMTP(host=self._host, port=self._port, timeout=10) as conn:
            if self._starttls:
                conn.starttls()
            if self._username:
                conn.login(self._username, self._password)
            conn.send_message(msg)
        logger.info("Confirmation email sent to %s", to)


class LogMailer:
    def send_confirmation(self, to: str, first_name: str, token: str) -> None:
        logger.info("SMTP not configured; confirmation email for %s not delivered", to)


def build_mailer(settings: Settings) -> Mailer:
    if not settings.smtp_host:
        return LogMailer()
    return SMTPMailer(
        host=settings.smtp_host,
        port=settings.smtp_port,
        sender=settings.mail_from,
        confirm_url_template=settings.confirm_url_template,
        username=settings.smtp_username,
        password=settings.smtp_password,
        starttls=settings.smtp_starttls,
    )
