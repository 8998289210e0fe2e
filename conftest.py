import os

# Configure the app before it is imported: in-memory storage, no log files.
os.environ["STUDYFLOW_STORAGE"] = "memory"
os.environ["LOG_DIR"] = ""
os.environ["FLASK_SECRET_KEY"] = "test-secret-key-for-development"
os.environ["REMINDER_SECRET"] = "test-reminder-secret"
os.environ["REMINDER_SCHEDULER_ENABLED"] = "false"

import pytest

import app as studyflow
from mailer import MailDeliveryError
from seed_admin import seed_admin
from storage import MemoryStore

REMINDER_SECRET = "test-reminder-secret"


class FakeMailer:
    """Records messages instead of talking SMTP; addresses in `failing` raise."""

    def __init__(self, failing=()):
        self.sent = []
        self.failing = set(failing)

    @property
    def is_configured(self):
        return True

    def send(self, to, subject, text, html_body=None):
        if to in self.failing:
            raise MailDeliveryError(f"Recipient refused: {to}")
        self.sent.append({'to': to, 'subject': subject, 'text': text, 'html': html_body})


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def client(store, mailer):
    studyflow.configure_services(store, mailer)
    studyflow.app.config['TESTING'] = True
    with studyflow.app.test_client() as test_client:
        yield test_client


def register(client, name="Test Student", email="student@example.com", password="secret123"):
    return client.post('/api/auth/register', json={'name': name, 'email': email, 'password': password})


@pytest.fixture
def user_client(client):
    response = register(client)
    assert response.status_code == 201
    client.user = response.get_json()['user']
    return client


@pytest.fixture
def admin_client(client, store):
    seed_admin(store, "admin@studyflow.com", "adminpass", "Admin")
    response = client.post('/api/auth/login', json={'email': "admin@studyflow.com", 'password': "adminpass"})
    assert response.status_code == 200
    return client
