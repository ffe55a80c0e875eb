from models import AuditLog, db
from routes.audit_log_routes import record_audit


def test_audit_log_is_append_only(app, client, admin_headers):
    with app.app_context():
        record_audit('SETTINGS_UPDATED', 'admin@akatech.example', {'keys': ['siteName']})
        log_id = AuditLog.query.first().id

    assert client.put(f'/api/audit-logs/{log_id}', headers=admin_headers, json={}).status_code == 403
    assert client.patch(f'/api/audit-logs/{log_id}', headers=admin_headers, json={}).status_code == 403
    assert client.delete(f'/api/audit-logs/{log_id}', headers=admin_headers).status_code == 403

    with app.app_context():
        assert db.session.get(AuditLog, log_id) is not None


def test_list_filters_by_action_and_limit(app, client, admin_headers):
    with app.app_context():
        record_audit('INVOICE_PAID', 'ama@example.com', {'invoiceId': '1'})
        record_audit('INVOICE_PAID', 'ama@example.com', {'invoiceId': '2'})
        record_audit('PROJECT_DELETED', 'admin@akatech.example')

    response = client.get('/api/admin/audit-logs?action=INVOICE_PAID', headers=admin_headers)
    assert [log['action'] for log in response.get_json()] == ['INVOICE_PAID', 'INVOICE_PAID']

    response = client.get('/api/audit-logs?limit=1', headers=admin_headers)
    assert len(response.get_json()) == 1


def test_audit_logs_are_admin_only(client, client_headers):
    assert client.get('/api/audit-logs', headers=client_headers).status_code == 403


def test_non_positive_limit_is_ignored(app, client, admin_headers):
    with app.app_context():
        record_audit('INVOICE_PAID', 'ama@example.com', {'invoiceId': '1'})
        record_audit('PROJECT_DELETED', 'admin@akatech.example')

    for limit in ('-1', '0'):
        response = client.get(f'/api/audit-logs?limit={limit}', headers=admin_headers)
        assert response.status_code == 200
        assert len(response.get_json()) == 2
