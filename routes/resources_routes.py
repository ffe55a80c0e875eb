# routes/resources_routes.py
"""Admin status updates and deletes shared by the dashboard list views.

``PATCH /api/<resource>/<id>`` and ``DELETE /api/<resource>/<id>`` accept
exactly four resource names. Routes with a fixed first segment (for example
``/api/notifications/read-all``) take precedence over these.
"""
import logging

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from auth.authhelpers import jwt_required
from decoraters import admin_required
from models import Invoice, Message, Project, Ticket, db
from realtime import broadcast
from routes.audit_log_routes import record_audit
from routes.invoices_routes import INVOICE_STATUSES, normalize_invoice_status
from routes.notifications_routes import notify_user
from routes.projects_routes import PROJECT_STATUSES
from routes.tickets_routes import TICKET_STATUSES, append_response

resources_bp = Blueprint('resources', __name__)
logger = logging.getLogger(__name__)

RESOURCE_MODELS = {
    'messages': Message,
    'projects': Project,
    'tickets': Ticket,
    'invoices': Invoice,
}

ALLOWED_STATUSES = {
    'messages': ('unread', 'read', 'replied'),
    'projects': PROJECT_STATUSES,
    'tickets': TICKET_STATUSES,
    'invoices': INVOICE_STATUSES,
}


def _load(resource, item_id):
    model = RESOURCE_MODELS.get(resource)
    if model is None:
        return None, (jsonify({"error": "Resource type not found"}), 404)
    item = db.session.get(model, item_id)
    if item is None:
        return None, (jsonify({"error": "Item not found"}), 404)
    return item, None


@resources_bp.route('/<string:resource>/<string:item_id>', methods=['PATCH'])
@jwt_required
@admin_required
def update_resource(resource, item_id):
    """
    Update the status of a message, project, ticket or invoice
    ---
    tags:
      - Admin
    parameters:
      - name: resource
        in: path
        type: string
        enum: [messages, projects, tickets, invoices]
        required: true
      - name: item_id
        in: path
        type: string
        required: true
      - name: body
        in: body
        schema:
          type: object
          properties:
            status:
              type: string
            response:
              type: string
              description: Admin reply, tickets only.
    responses:
      200:
        description: The updated item, readable.
      400:
        description: Status not valid for this resource.
      404:
        description: Unknown resource type or item.
    """
    item, error = _load(resource, item_id)
    if error:
        return error

    data = request.get_json(silent=True) or {}
    status = data.get('status')
    response = data.get('response')

    if status:
        if resource == 'invoices':
            status = normalize_invoice_status(status)
        if status not in ALLOWED_STATUSES[resource]:
            return jsonify({"error": f"Invalid status for {resource}: {status}"}), 400
        item.status = status

    if resource == 'tickets' and response:
        append_response(item, 'admin', response)

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to update %s %s", resource, item_id)
        return jsonify({"error": f"Failed to update {resource}"}), 500

    updated = item.to_dict()
    logger.info("%s %s updated", resource, item_id)
    broadcast(f'update_{resource}', updated)
    record_audit(f'{resource[:-1].upper()}_UPDATED', request.current_user_email,
                 {'id': item_id, 'status': status, 'replied': bool(response)})

    if resource == 'tickets' and response and item.user_id:
        notify_user(item.user_id, "New reply on your ticket",
                    f"Support replied to '{item.subject}'.")
    return jsonify(updated), 200


@resources_bp.route('/<string:resource>/<string:item_id>', methods=['DELETE'])
@jwt_required
@admin_required
def delete_resource(resource, item_id):
    logger.warning("Received DELETE request for %s ID: %s", resource, item_id)
    item, error = _load(resource, item_id)
    if error:
        return error

    if resource == 'invoices' and item.is_paid:
        return jsonify({"error": "Paid invoices cannot be deleted"}), 400

    if resource == 'projects':
        for invoice in item.invoices:
            invoice.project_id = None

    db.session.delete(item)
    db.session.commit()

    broadcast(f'delete_{resource}', {'id': item_id})
    record_audit(f'{resource[:-1].upper()}_DELETED', request.current_user_email, {'id': item_id})
    return jsonify({"message": f"{resource[:-1].capitalize()} {item_id} deleted successfully"}), 200
