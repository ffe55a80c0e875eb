import csv
import io
from datetime import datetime

import pytest

from conftest import event_names
from models import AuditLog, Notification, Project, Subscription, db
from routes.subscriptions_routes import add_months


def create_subscription(client, headers, **overrides):
    payload = {
        'userName': 'Ama Mensah',
        'userEmail': 'ama@example.com',
        'plan': 'Startup Identity',
        'durationMonths': 6,
    }
    payload.update(overrides)
    return client.post('/api/subscriptions', headers=headers, json=payload)


def act(client, headers, subscription_id, action, **details):
    return client.patch(f'/api/subscriptions/{subscription_id}/action', headers=headers,
                        json={'action': action, 'details': details})


@pytest.mark.parametrize('start, months, expected', [
    (datetime(2024, 1, 31), 1, datetime(2024, 2, 29)),
    (datetime(2023, 1, 31), 1, datetime(2023, 2, 28)),
    (datetime(2024, 11, 15), 3, datetime(2025, 2, 15)),
    (datetime(2024, 5, 1), 12, datetime(2025, 5, 1)),
])
def test_add_months(start, months, expected):
    assert add_months(start, months) == expected


def test_admin_creates_subscription_linked_to_user(client, client_id, admin_headers, socket_client):
    response = create_subscription(client, admin_headers)

    assert response.status_code == 201
    body = response.get_json()
    assert body['status'] == 'pending'
    assert body['userId'] == client_id
    assert body['durationMonths'] == 6
    assert 'new_subscription' in event_names(socket_client)


def test_create_rejects_unknown_plan(client, admin_headers):
    assert create_subscription(client, admin_headers, plan='Gold').status_code == 400


def test_approve_activates_and_creates_project(app, client, client_id, admin_headers, socket_client):
    subscription_id = create_subscription(client, admin_headers).get_json()['id']
    socket_client.get_received()

    response = act(client, admin_headers, subscription_id, 'approve')

    assert response.status_code == 200
    body = response.get_json()
    assert body['status'] == 'active'
    assert body['project']['status'] == 'in-progress'
    assert body['project']['userId'] == client_id

    start = datetime.fromisoformat(body['startDate'])
    end = datetime.fromisoformat(body['endDate'])
    assert end == add_months(start, 6)

    names = event_names(socket_client)
    assert 'update_subscriptions' in names
    assert 'new_project' in names
    with app.app_context():
        assert Project.query.filter_by(user_id=client_id).count() == 1
        assert Notification.query.filter_by(user_id=client_id).count() == 1
        assert AuditLog.query.filter_by(action='SUBSCRIPTION_APPROVE').count() == 1


def test_disallowed_transitions_conflict(client, admin_headers):
    subscription_id = create_subscription(client, admin_headers).get_json()['id']

    assert act(client, admin_headers, subscription_id, 'extend').status_code == 409
    assert act(client, admin_headers, subscription_id, 'reject').status_code == 200
    assert act(client, admin_headers, subscription_id, 'approve').status_code == 409
    assert act(client, admin_headers, subscription_id, 'cancel').status_code == 409


def test_unknown_action(client, admin_headers):
    subscription_id = create_subscription(client, admin_headers).get_json()['id']
    assert act(client, admin_headers, subscription_id, 'pause').status_code == 400


def test_details_must_be_an_object(app, client, admin_headers):
    subscription_id = create_subscription(client, admin_headers).get_json()['id']

    response = client.patch(f'/api/subscriptions/{subscription_id}/action', headers=admin_headers,
                            json={'action': 'reject', 'details': 'duplicate order'})

    assert response.status_code == 400
    assert response.get_json() == {'error': 'details must be an object'}
    with app.app_context():
        assert db.session.get(Subscription, subscription_id).status == 'pending'


def test_extend_moves_end_date(client, admin_headers):
    subscription_id = create_subscription(client, admin_headers).get_json()['id']
    approved = act(client, admin_headers, subscription_id, 'approve').get_json()

    response = act(client, admin_headers, subscription_id, 'extend', months=2)
    assert response.status_code == 200
    body = response.get_json()
    assert body['status'] == 'extended'
    assert datetime.fromisoformat(body['endDate']) == add_months(datetime.fromisoformat(approved['endDate']), 2)

    # an extended subscription may be extended again, then cancelled
    assert act(client, admin_headers, subscription_id, 'extend').status_code == 200
    assert act(client, admin_headers, subscription_id, 'cancel').get_json()['status'] == 'cancelled'


def test_listing_is_paginated_and_scoped(client, admin_headers, client_headers, client_id):
    for _ in range(3):
        create_subscription(client, admin_headers)
    create_subscription(client, admin_headers, userEmail='kofi@example.com', userName='Kofi')

    response = client.get('/api/subscriptions?page=2&limit=3', headers=admin_headers).get_json()
    assert response['total'] == 4
    assert response['totalPages'] == 2
    assert len(response['data']) == 1

    response = client.get('/api/subscriptions', headers=client_headers).get_json()
    assert response['total'] == 3
    assert {s['userEmail'] for s in response['data']} == {'ama@example.com'}


def test_listing_filters_by_status(client, admin_headers):
    first = create_subscription(client, admin_headers).get_json()['id']
    create_subscription(client, admin_headers)
    act(client, admin_headers, first, 'approve')

    response = client.get('/api/subscriptions?status=active', headers=admin_headers).get_json()
    assert [s['id'] for s in response['data']] == [first]


def test_export_csv(client, admin_headers, client_headers):
    create_subscription(client, admin_headers)

    response = client.get('/api/subscriptions/export', headers=admin_headers)

    assert response.status_code == 200
    assert response.mimetype == 'text/csv'
    lines = response.get_data(as_text=True).splitlines()
    assert lines[0] == 'id,userName,userEmail,plan,status,startDate,endDate,createdAt'
    assert 'ama@example.com' in lines[1]

    assert client.get('/api/subscriptions/export', headers=client_headers).status_code == 403


def test_delete_subscription(app, client, admin_headers):
    subscription_id = create_subscription(client, admin_headers).get_json()['id']

    assert client.delete(f'/api/subscriptions/{subscription_id}', headers=admin_headers).status_code == 200
    with app.app_context():
        assert db.session.get(Subscription, subscription_id) is None


def test_export_neutralises_spreadsheet_formulas(client, admin_headers):
    create_subscription(client, admin_headers, userName='=1+2', userEmail='@evil.example')

    rows = list(csv.DictReader(io.StringIO(
        client.get('/api/subscriptions/export', headers=admin_headers).get_data(as_text=True))))

    assert rows[0]['userName'] == "'=1+2"
    assert rows[0]['userEmail'] == "'@evil.example"
    assert rows[0]['plan'] == 'Startup Identity'
