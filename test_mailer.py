#!/usr/bin/env python3
"""
Tests for reminder email composition and SMTP error handling
"""

from datetime import datetime, timezone

import aiosmtplib
import pytest

import mailer as mailer_module
from mailer import Mailer, MailDeliveryError, build_reminder_message


def test_unconfigured_mailer_refuses_to_send():
    mailer = Mailer(username='', password='')
    assert not mailer.is_configured
    with pytest.raises(MailDeliveryError):
        mailer.send('a@example.com', 'Hi', 'Hello')


def test_build_message_has_plain_and_html_parts():
    mailer = Mailer(host='smtp.example.com', port=587, username='bot@example.com', password='pw')
    message = mailer.build_message('a@example.com', 'Subject', 'Tom & Jerry')
    assert message['From'] == '"StudyFlow" <bot@example.com>'
    assert message['To'] == 'a@example.com'
    parts = message.get_payload()
    assert [p.get_content_type() for p in parts] == ['text/plain', 'text/html']
    assert 'Tom &amp; Jerry' in parts[1].get_payload(decode=True).decode()


def test_smtp_errors_become_delivery_errors(monkeypatch):
    async def refuse(*args, **kwargs):
        raise aiosmtplib.SMTPException("relay denied")

    monkeypatch.setattr(mailer_module.aiosmtplib, 'send', refuse)
    mailer = Mailer(host='smtp.example.com', port=587, username='bot@example.com', password='pw')
    with pytest.raises(MailDeliveryError, match="relay denied"):
        mailer.send('a@example.com', 'Hi', 'Hello')


def test_send_uses_starttls_except_on_465(monkeypatch):
    calls = []

    async def record(message, **kwargs):
        calls.append(kwargs)

    monkeypatch.setattr(mailer_module.aiosmtplib, 'send', record)
    Mailer(host='smtp.example.com', port=587, username='u', password='p').send('a@example.com', 'Hi', 'Hello')
    Mailer(host='smtp.example.com', port=465, username='u', password='p').send('a@example.com', 'Hi', 'Hello')

    assert (calls[0]['use_tls'], calls[0]['start_tls']) == (False, True)
    assert (calls[1]['use_tls'], calls[1]['start_tls']) == (True, False)


def test_build_reminder_message_lists_every_item():
    due = datetime(2025, 3, 12, 9, 0, tzinfo=timezone.utc)
    subject, text, html_body = build_reminder_message(None, [
        {'title': 'Essay', 'due': due},
        {'title': '<Lab>', 'due': due},
    ])
    assert subject == '⏰ Task Reminder - StudyFlow'
    assert text.startswith('Hello Student,')
    assert '• Essay (Due: 2025-03-12 09:00 UTC)' in text
    assert '&lt;Lab&gt;' in html_body
