"""
Email delivery for reminders.
Builds multipart (plain + HTML) messages and sends them over SMTP with aiosmtplib.
"""

import asyncio
import html
import logging
import os
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import aiosmtplib

logger = logging.getLogger('studyflow.reminders')


class MailDeliveryError(Exception):
    """The message could not be handed to the SMTP server."""


class Mailer:
    """Sends email through one SMTP account"""

    def __init__(self, host=None, port=None, username=None, password=None, sender=None, timeout=30):
        self.host = host or os.getenv("EMAIL_HOST", "smtp.gmail.com")
        self.port = int(port or os.getenv("EMAIL_PORT", 587))
        self.username = username if username is not None else os.getenv("EMAIL_USER")
        self.password = password if password is not None else os.getenv("EMAIL_PASS")
        self.sender = sender or os.getenv("EMAIL_FROM") or f'"StudyFlow" <{self.username}>'
        self.timeout = timeout

    @property
    def is_configured(self):
        return bool(self.username and self.password)

    def build_message(self, to, subject, text, html_body=None):
        message = MIMEMultipart("alternative")
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.attach(MIMEText(text, "plain"))
        message.attach(MIMEText(html_body or f"<p>{html.escape(text)}</p>", "html"))
        return message

    def send(self, to, subject, text, html_body=None):
        """Send one message; raises MailDeliveryError on any failure."""
        if not self.is_configured:
            raise MailDeliveryError("Missing EMAIL_USER / EMAIL_PASS configuration")

        message = self.build_message(to, subject, text, html_body)
        # Port 465 speaks TLS from the first byte; anything else upgrades with STARTTLS.
        implicit_tls = self.port == 465
        try:
            asyncio.run(aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                use_tls=implicit_tls,
                start_tls=not implicit_tls,
                timeout=self.timeout,
            ))
        except (aiosmtplib.SMTPException, OSError) as e:
            raise MailDeliveryError(str(e)) from e

        logger.info(f"📧 Email sent successfully to {to}: {subject}")


def build_reminder_message(name, items):
    """Subject, plain-text and HTML bodies listing every due item for one recipient."""
    lines = [f"• {item['title']} (Due: {item['due'].strftime('%Y-%m-%d %H:%M %Z')})" for item in items]
    subject = "⏰ Task Reminder - StudyFlow"
    if len(items) == 1:
        subject = f"⏰ Reminder: {items[0]['title']}"

    greeting = name or "Student"
    text = (
        f"Hello {greeting},\n\n"
        f"The following items were due recently:\n\n"
        + "\n".join(lines)
        + "\n\nStay on track with StudyFlow!\n\n- StudyFlow"
    )
    rows = "".join(f"<li>{html.escape(line[2:])}</li>" for line in lines)
    html_body = (
        f"<p>Hello {html.escape(greeting)},</p>"
        f"<p>The following items were due recently:</p>"
        f"<ul>{rows}</ul>"
        f"<p>Stay on track with StudyFlow! 🚀</p>"
    )
    return subject, text, html_body
