from conftest import event_names
from models import AuditLog, Invoice, Notification, Project, db


def submit_project(client, **overrides):
    payload = {
        'name': 'Ama Mensah',
        'email': 'Ama@Example.com',
        'company': 'Ama Ventures',
        'plan': 'Startup Identity',
        'notes': 'Need it before Christmas.',
    }
    payload.update(overrides)
    return client.post('/api/projects', json=payload)


def test_public_project_request_links_existing_user(app, client, client_id, socket_client):
    response = submit_project(client)

    assert response.status_code == 201
    with app.app_context():
        project = db.session.get(Project, response.get_json()['id'])
        assert project.user_id == client_id
        assert project.email == 'ama@example.com'
        assert project.status == 'pending'
        assert project.notes != 'Need it before Christmas.'
        assert project.to_dict()['notes'] == 'Need it before Christmas.'
    assert 'new_project' in event_names(socket_client)


def test_project_request_requires_name_email_and_plan(client):
    response = submit_project(client, plan='')
    assert response.status_code == 400


def test_admin_lists_projects_on_both_routes(client, admin_headers):
    submit_project(client)
    for url in ('/api/projects', '/api/admin/projects'):
        response = client.get(url, headers=admin_headers)
        assert response.status_code == 200
        assert response.get_json()[0]['notes'] == 'Need it before Christmas.'


def test_client_sees_only_own_projects(client, client_id, client_headers, other_client_id):
    submit_project(client)
    submit_project(client, email='kofi@example.com', name='Kofi')

    response = client.get('/api/client/projects?email=ama@example.com', headers=client_headers)
    assert response.status_code == 200
    assert [p['email'] for p in response.get_json()] == ['ama@example.com']

    response = client.get('/api/client/projects?email=kofi@example.com', headers=client_headers)
    assert response.status_code == 403


def test_admin_may_query_any_email(client, admin_headers):
    submit_project(client, email='kofi@example.com', name='Kofi')
    response = client.get('/api/client/projects?email=kofi@example.com', headers=admin_headers)
    assert response.status_code == 200
    assert len(response.get_json()) == 1


def test_status_change_notifies_owner(app, client, client_id, admin_headers, socket_client):
    project_id = submit_project(client).get_json()['id']
    socket_client.get_received()

    response = client.patch(f'/api/admin/projects/{project_id}', headers=admin_headers,
                            json={'status': 'in-progress', 'notes': 'Kickoff on Monday'})

    assert response.status_code == 200
    assert response.get_json()['notes'] == 'Kickoff on Monday'
    names = event_names(socket_client)
    assert 'update_projects' in names
    assert 'new_notification' in names
    with app.app_context():
        assert Notification.query.filter_by(user_id=client_id).count() == 1
        assert AuditLog.query.filter_by(action='PROJECT_UPDATED').count() == 1


def test_invalid_project_status_is_rejected(client, admin_headers):
    project_id = submit_project(client).get_json()['id']
    response = client.patch(f'/api/admin/projects/{project_id}', headers=admin_headers,
                            json={'status': 'archived'})
    assert response.status_code == 400


def test_delete_project_keeps_its_invoices(app, client, client_id, admin_headers):
    project_id = submit_project(client).get_json()['id']
    with app.app_context():
        db.session.add(Invoice(reference_number='INV-20240101-AAAAAA', user_id=client_id,
                               project_id=project_id, amount='100.00', status='sent'))
        db.session.commit()

    response = client.delete(f'/api/admin/projects/{project_id}', headers=admin_headers)

    assert response.status_code == 200
    with app.app_context():
        assert db.session.get(Project, project_id) is None
        invoice = Invoice.query.filter_by(reference_number='INV-20240101-AAAAAA').one()
        assert invoice.project_id is None
