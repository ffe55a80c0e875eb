from datetime import timedelta
import time

import jwt

from auth.authhelpers import create_access_token
from conftest import ADMIN_PASSWORD, CLIENT_PASSWORD, TEST_CONFIG, event_names
from models import AuditLog, User, db


def test_register_returns_token_and_broadcasts(client, socket_client):
    response = client.post('/api/auth/register', json={
        'email': 'New.User@Example.com', 'password': 'long-enough-pw', 'name': 'New User',
    })

    assert response.status_code == 201
    body = response.get_json()
    assert body['user']['email'] == 'new.user@example.com'
    assert body['user']['role'] == 'client'
    assert 'password_hash' not in body['user']
    claims = jwt.decode(body['token'], TEST_CONFIG['JWT_SECRET_KEY'], algorithms=['HS256'])
    assert claims['email'] == 'new.user@example.com'
    assert claims['role'] == 'client'
    assert 'new_user' in event_names(socket_client)


def test_register_rejects_taken_email(client, client_id):
    response = client.post('/api/auth/register', json={
        'email': 'ama@example.com', 'password': 'long-enough-pw', 'name': 'Ama',
    })
    assert response.status_code == 409


def test_register_rejects_short_password(client):
    response = client.post('/api/auth/register', json={
        'email': 'short@example.com', 'password': 'short', 'name': 'Short',
    })
    assert response.status_code == 400


def test_client_login(client, client_id):
    response = client.post('/api/auth/login', json={'email': 'ama@example.com', 'password': CLIENT_PASSWORD})
    assert response.status_code == 200
    assert response.get_json()['user']['id'] == client_id

    response = client.post('/api/auth/login', json={'email': 'ama@example.com', 'password': 'wrong-password'})
    assert response.status_code == 401


def test_admin_login_requires_admin_role(app, client, admin_id, client_id, sent_emails):
    response = client.post('/api/login', json={'username': 'admin@akatech.example', 'password': ADMIN_PASSWORD})
    assert response.status_code == 200
    assert response.get_json()['user']['role'] == 'admin'
    assert sent_emails and sent_emails[0]['subject'].startswith('Security Alert')

    response = client.post('/api/login', json={'email': 'ama@example.com', 'password': CLIENT_PASSWORD})
    assert response.status_code == 401

    with app.app_context():
        assert AuditLog.query.filter_by(action='ADMIN_LOGIN').count() == 1


def test_admin_token_is_short_lived(app, admin_id):
    with app.app_context():
        token = create_access_token(db.session.get(User, admin_id))
    claims = jwt.decode(token, TEST_CONFIG['JWT_SECRET_KEY'], algorithms=['HS256'])
    remaining = claims['exp'] - time.time()
    assert 3500 < remaining <= 3605


def test_missing_header_is_401_and_bad_token_is_403(app, client, client_id):
    assert client.get('/api/auth/me').status_code == 401

    response = client.get('/api/auth/me', headers={'Authorization': 'Bearer not-a-token'})
    assert response.status_code == 403

    with app.app_context():
        expired = create_access_token(db.session.get(User, client_id), expires_in=timedelta(seconds=-5))
    response = client.get('/api/auth/me', headers={'Authorization': f'Bearer {expired}'})
    assert response.status_code == 403


def test_client_token_cannot_reach_admin_routes(client, client_headers):
    assert client.get('/api/users', headers=client_headers).status_code == 403


def test_me_and_profile_update(client, client_headers, socket_client):
    assert client.get('/api/auth/me', headers=client_headers).get_json()['user']['email'] == 'ama@example.com'

    response = client.patch('/api/auth/profile', headers=client_headers, json={
        'name': '<b>Ama</b> M.', 'company': 'Ama Ventures', 'phone': '+233 20 000 0000',
    })
    assert response.status_code == 200
    user = response.get_json()['user']
    assert user['name'] == 'Ama M.'
    assert user['company'] == 'Ama Ventures'
    assert 'update_users' in event_names(socket_client)


def test_change_password_checks_old_password(client, client_headers):
    response = client.post('/api/auth/change-password', headers=client_headers,
                           json={'newPassword': 'another-password'})
    assert response.status_code == 400

    response = client.post('/api/auth/change-password', headers=client_headers,
                           json={'oldPassword': 'wrong-password', 'newPassword': 'another-password'})
    assert response.status_code == 401

    response = client.post('/api/auth/change-password', headers=client_headers,
                           json={'oldPassword': CLIENT_PASSWORD, 'newPassword': 'another-password'})
    assert response.status_code == 200

    response = client.post('/api/auth/login', json={'email': 'ama@example.com', 'password': 'another-password'})
    assert response.status_code == 200


def _fake_google(monkeypatch, email='gina@gmail.com', sub='google-sub-1'):
    def fake_verify(credential, request, audience):
        assert audience == TEST_CONFIG['GOOGLE_CLIENT_ID']
        if credential != 'good-credential':
            raise ValueError('Token signature invalid')
        return {
            'iss': 'https://accounts.google.com',
            'sub': sub,
            'email': email,
            'email_verified': True,
            'name': 'Gina',
            'picture': 'https://example.com/gina.png',
        }
    monkeypatch.setattr('google.oauth2.id_token.verify_oauth2_token', fake_verify)


def test_google_login_creates_user_who_may_set_first_password(app, client, monkeypatch):
    _fake_google(monkeypatch)

    response = client.post('/api/auth/google', json={'credential': 'good-credential'})
    assert response.status_code == 200
    body = response.get_json()
    assert body['user']['accountType'] == 'google'
    assert body['user']['hasPassword'] is False

    headers = {'Authorization': f"Bearer {body['token']}"}
    response = client.post('/api/auth/change-password', headers=headers, json={'newPassword': 'first-password'})
    assert response.status_code == 200

    # signing in again links to the same account
    response = client.post('/api/auth/google', json={'credential': 'good-credential'})
    assert response.get_json()['user']['id'] == body['user']['id']
    with app.app_context():
        assert User.query.filter_by(email='gina@gmail.com').count() == 1


def test_google_login_rejects_bad_credential(client, monkeypatch):
    _fake_google(monkeypatch)
    response = client.post('/api/auth/google', json={'credential': 'forged'})
    assert response.status_code == 401
    assert response.get_json() == {'error': 'Invalid Google credential'}


def test_google_login_unconfigured(app, client):
    app.config['GOOGLE_CLIENT_ID'] = None
    response = client.post('/api/auth/google', json={'credential': 'anything'})
    assert response.status_code == 503


def test_create_admin_command_promotes_user(app, client_id):
    runner = app.test_cli_runner()
    result = runner.invoke(args=['create-admin', '--email', 'ama@example.com', '--password', 'promoted-pass'])

    assert result.exit_code == 0, result.output
    with app.app_context():
        user = db.session.get(User, client_id)
        assert user.role == 'admin'
