"""
Reminder dispatch.

Finds tasks and events that have just become due (inside the trailing
window [now - window, now]) and have not been reminded yet, sends one email
per owner listing all of them, and only then marks each item as reminded.

A send failure leaves that owner's items pending so the next scan retries
them while they are still inside the window. Once the window has passed the
item is never reminded; there is no backoff or catch-up.
"""

import logging
from datetime import timedelta, timezone

from mailer import MailDeliveryError, build_reminder_message
from models import to_datetime_safe, utcnow
from monitoring import monitor, timed

logger = logging.getLogger('studyflow.reminders')

DEFAULT_WINDOW_MINUTES = 10

# collection -> (due field, extra equality filter)
REMINDER_SOURCES = {
    'tasks': ('due_date', ('completed', '==', False)),
    'events': ('date_time', ('reminder_enabled', '==', True)),
}


class ReminderDispatcher:
    def __init__(self, store, mailer, window_minutes=DEFAULT_WINDOW_MINUTES, tz=timezone.utc):
        self.store = store
        self.mailer = mailer
        self.window = timedelta(minutes=window_minutes)
        self.tz = tz

    def find_due_items(self, now, user_id=None):
        """Unreminded items whose due instant lies in [now - window, now]."""
        window_start = now - self.window
        items = []
        for collection, (due_field, state_filter) in REMINDER_SOURCES.items():
            filters = [state_filter, (due_field, '>=', window_start), (due_field, '<=', now)]
            if user_id is not None:
                filters.append(('user_id', '==', user_id))
            for doc in self.store.find(collection, filters):
                if doc.get('reminder_sent') is True:
                    continue
                due = to_datetime_safe(doc.get(due_field))
                if due is None:
                    continue
                items.append({
                    'collection': collection,
                    'id': doc['id'],
                    'user_id': doc.get('user_id'),
                    'title': doc.get('title') or 'Untitled',
                    'due': due.astimezone(self.tz),
                })
        items.sort(key=lambda item: item['due'])
        return items

    def group_by_owner(self, items):
        batches = {}
        for item in items:
            batches.setdefault(item['user_id'], []).append(item)
        return batches

    def mark_sent(self, items, now):
        for item in items:
            self.store.update(item['collection'], item['id'], {
                'reminder_sent': True,
                'reminder_sent_at': now,
            })

    @timed('studyflow.reminders')
    def scan(self, user_id=None, now=None):
        """
        Run one reminder pass. `user_id` limits the pass to one owner's items
        (self-service); None scans every user (privileged trigger).
        """
        now = now or utcnow()
        items = self.find_due_items(now, user_id)
        summary = {'scanned': len(items), 'sent': 0, 'notified_items': 0, 'failed': 0, 'skipped': 0}
        if not items:
            logger.info("⏳ No reminders due right now")
            return summary

        for owner_id, batch in self.group_by_owner(items).items():
            owner = self.store.get('users', owner_id) if owner_id else None
            email = (owner or {}).get('email')
            if not email:
                logger.warning(f"⚠️ No email found for user {owner_id}; skipping {len(batch)} reminders")
                summary['skipped'] += len(batch)
                continue

            subject, text, html_body = build_reminder_message(owner.get('name'), batch)
            try:
                self.mailer.send(email, subject, text, html_body)
            except MailDeliveryError as e:
                monitor.log_reminder_batch(email, len(batch), success=False, error=e)
                summary['failed'] += 1
                continue

            self.mark_sent(batch, now)
            monitor.log_reminder_batch(email, len(batch), success=True)
            summary['sent'] += 1
            summary['notified_items'] += len(batch)

        logger.info(f"📧 Reminder scan finished: {summary}")
        return summary
