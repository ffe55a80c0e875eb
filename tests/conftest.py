"""
Test configuration and fixtures.

Provides:
- A fresh application with an in-memory SQLite database per test
- An admin and a client account with bearer headers
- A Socket.IO test client for asserting broadcasts
"""
import pytest

from app import create_app
from auth.auth import hash_password
from auth.authhelpers import create_access_token
from extensions import socketio
from models import User, db

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite://',
    'SQLALCHEMY_ENGINE_OPTIONS': {},
    'JWT_SECRET_KEY': 'test-secret-key-that-is-long-enough-for-hs256',
    'SECRET_KEY': 'test-secret-key-that-is-long-enough-for-hs256',
    'RATELIMIT_ENABLED': False,
    'EMAIL_SENDER': None,
    'EMAIL_PASSWORD': None,
    'GOOGLE_CLIENT_ID': 'test-client-id.apps.googleusercontent.com',
}

ADMIN_PASSWORD = 'admin-password-123'
CLIENT_PASSWORD = 'client-password-123'


# =============================================================================
# Application
# =============================================================================

@pytest.fixture
def app():
    app = create_app(dict(TEST_CONFIG))
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def socket_client(app, client):
    socket = socketio.test_client(app, flask_test_client=client)
    # drop anything emitted on connect
    socket.get_received()
    yield socket
    if socket.is_connected():
        socket.disconnect()


@pytest.fixture
def sent_emails(monkeypatch):
    """Capture outgoing mail instead of logging it."""
    sent = []

    def fake_send_email(recipients, subject, body):
        sent.append({'to': recipients, 'subject': subject, 'body': body})
        return True

    monkeypatch.setattr('utils.email_utils.send_email', fake_send_email)
    monkeypatch.setattr('routes.messages_routes.send_email', fake_send_email)
    return sent


# =============================================================================
# Accounts
# =============================================================================

def make_user(app, email, password=None, role='client', name=None):
    with app.app_context():
        user = User(
            email=email,
            name=name or email.split('@')[0],
            role=role,
            password_hash=hash_password(password) if password else None,
            account_type='email',
        )
        db.session.add(user)
        db.session.commit()
        return user.id


def bearer(app, user_id):
    with app.app_context():
        user = db.session.get(User, user_id)
        return {'Authorization': f'Bearer {create_access_token(user)}'}


@pytest.fixture
def admin_id(app):
    return make_user(app, 'admin@akatech.example', ADMIN_PASSWORD, role='admin', name='Admin')


@pytest.fixture
def client_id(app):
    return make_user(app, 'ama@example.com', CLIENT_PASSWORD, name='Ama Mensah')


@pytest.fixture
def other_client_id(app):
    return make_user(app, 'kofi@example.com', CLIENT_PASSWORD, name='Kofi Boateng')


@pytest.fixture
def admin_headers(app, admin_id):
    return bearer(app, admin_id)


@pytest.fixture
def client_headers(app, client_id):
    return bearer(app, client_id)


@pytest.fixture
def other_client_headers(app, other_client_id):
    return bearer(app, other_client_id)


def event_names(socket):
    return [packet['name'] for packet in socket.get_received()]
