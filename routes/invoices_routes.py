import uuid
import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation

from flask import Blueprint, request, jsonify
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from api.exception import ApiError
from auth.authhelpers import get_current_user, jwt_required
from decoraters import admin_required, client_required
from models import Invoice, Project, User, db
from realtime import broadcast
from routes.audit_log_routes import record_audit
from routes.notifications_routes import notify_admins, notify_user
from utils.email_utils import send_invoice_email
from utils.obfuscation import obfuscate
from utils.plans import plan_price
from utils.sanitize import clean

# --- BLUEPRINT INITIALIZATION ---
invoices_bp = Blueprint('invoices_bp', __name__)
logger = logging.getLogger(__name__)

INVOICE_STATUSES = ('requested', 'draft', 'sent', 'Paid', 'overdue', 'cancelled')
GENERATED_INVOICE_DUE_DAYS = 14


# --- HELPER FUNCTIONS ---

def safe_cast(value, target_type, default=None):
    """Safely casts a string value to the target type."""
    if value is None or value == '':
        return default
    try:
        if target_type == datetime:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
            return parsed.replace(tzinfo=None)
        elif target_type == Decimal:
            # Use strict Decimal creation
            amount = Decimal(str(value).replace(',', ''))
            return amount if amount.is_finite() else default
        return target_type(value)
    except (ValueError, TypeError, InvalidOperation):
        return default


def normalize_invoice_status(status):
    lowered = (status or '').strip().lower()
    if lowered == 'paid':
        return 'Paid'
    return lowered


def format_amount(value):
    return str(value.quantize(Decimal('0.01')))


def generate_reference_number():
    while True:
        reference = f"INV-{datetime.utcnow():%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"
        if not Invoice.query.filter_by(reference_number=reference).first():
            return reference


def user_summary(user):
    if user is None:
        return None
    return {'id': user.id, 'name': user.name or user.email, 'email': user.email}


def invoice_event(invoice):
    """Readable invoice plus the owning user, as the dashboard toasts expect."""
    payload = invoice.to_dict()
    payload['user'] = user_summary(invoice.user)
    return payload


def deliver_invoice(invoice):
    """Email and notify the invoice owner once it is sent."""
    recipient = invoice.user.email if invoice.user else (invoice.project.email if invoice.project else None)
    if recipient:
        send_invoice_email(recipient, invoice)
    if invoice.user_id:
        notify_user(invoice.user_id, "New invoice",
                    f"Invoice {invoice.reference_number} for GH₵ {invoice.amount} is ready.")


# =========================================================================
# 1. ADMIN: LIST / CREATE / UPDATE / DELETE
# =========================================================================
@invoices_bp.route('/admin/invoices', methods=['GET'])
@jwt_required
@admin_required
def get_all_invoices():
    logger.info("Fetching all invoices.")
    invoices = Invoice.query.order_by(Invoice.created_at.desc()).all()
    return jsonify([inv.to_dict() for inv in invoices]), 200


@invoices_bp.route('/admin/invoices', methods=['POST'])
@jwt_required
@admin_required
def create_invoice():
    """
    Create an invoice
    ---
    tags:
      - Invoices
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          required:
            - amount
          properties:
            projectId:
              type: string
            userId:
              type: string
            amount:
              type: string
            dueDate:
              type: string
              format: date
            status:
              type: string
            description:
              type: string
            items:
              type: array
              items:
                type: object
    responses:
      201:
        description: Invoice created.
      400:
        description: Invalid amount, date or status.
      404:
        description: Project or user not found.
    """
    data = request.get_json(silent=True) or {}
    logger.info("Received POST request for new invoice.")

    amount = safe_cast(data.get('amount'), Decimal)
    if amount is None or amount < 0:
        return jsonify({'error': "A valid, non-negative amount is required."}), 400

    due_date = safe_cast(data.get('dueDate'), datetime)
    if data.get('dueDate') and due_date is None:
        return jsonify({'error': "Invalid date format for dueDate."}), 400

    status = normalize_invoice_status(data.get('status') or 'draft')
    if status not in INVOICE_STATUSES:
        return jsonify({'error': f"Invalid status: {data.get('status')}"}), 400

    project = None
    if data.get('projectId'):
        project = db.session.get(Project, data['projectId'])
        if not project:
            return jsonify({'error': "Project not found"}), 404

    user_id = data.get('userId') or (project.user_id if project else None)
    if user_id and not db.session.get(User, user_id):
        return jsonify({'error': "User not found"}), 404

    invoice = Invoice(
        reference_number=generate_reference_number(),
        user_id=user_id,
        project_id=project.id if project else None,
        amount=format_amount(amount),
        status=status,
        due_date=due_date,
        description=obfuscate(clean(data.get('description') or '')),
        items=data.get('items') or [],
    )
    try:
        db.session.add(invoice)
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        logger.error("Integrity error creating invoice: %s", str(e.orig))
        return jsonify({'error': 'Integrity constraint failed (e.g., duplicate reference number).'}), 409

    logger.info("Invoice %s created successfully.", invoice.id)
    broadcast('new_invoice', invoice_event(invoice))
    record_audit('INVOICE_CREATED', request.current_user_email,
                 {'invoiceId': invoice.id, 'referenceNumber': invoice.reference_number,
                  'amount': invoice.amount, 'status': invoice.status})
    if invoice.status == 'sent':
        deliver_invoice(invoice)
    return jsonify(invoice.to_dict()), 201


@invoices_bp.route('/admin/invoices/<string:invoice_id>', methods=['PATCH', 'PUT'])
@jwt_required
@admin_required
def update_invoice(invoice_id):
    data = request.get_json(silent=True) or {}
    logger.info("Received PATCH request for invoice ID: %s", invoice_id)

    invoice = db.session.get(Invoice, invoice_id)
    if not invoice:
        return jsonify({'error': f"Invoice with ID {invoice_id} not found."}), 404

    previous_status = invoice.status

    if 'amount' in data:
        amount = safe_cast(data['amount'], Decimal)
        if amount is None or amount < 0:
            return jsonify({'error': "A valid, non-negative amount is required."}), 400
        invoice.amount = format_amount(amount)
    if 'dueDate' in data:
        invoice.due_date = safe_cast(data['dueDate'], datetime, invoice.due_date)
    if 'status' in data:
        status = normalize_invoice_status(data['status'])
        if status not in INVOICE_STATUSES:
            return jsonify({'error': f"Invalid status: {data['status']}"}), 400
        invoice.status = status
    if 'description' in data:
        invoice.description = obfuscate(clean(data['description'] or ''))
    if 'items' in data:
        invoice.items = data['items'] or []
    if 'projectId' in data:
        if data['projectId'] and not db.session.get(Project, data['projectId']):
            return jsonify({'error': "Project not found"}), 404
        invoice.project_id = data['projectId'] or None

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Unexpected error updating invoice.")
        return jsonify({'error': 'Failed to update invoice'}), 500

    logger.info("Invoice %s updated successfully.", invoice_id)
    broadcast('update_invoices', invoice_event(invoice))
    record_audit('INVOICE_UPDATED', request.current_user_email,
                 {'invoiceId': invoice.id, 'changes': sorted(data.keys()),
                  'status': invoice.status})
    if invoice.status == 'sent' and previous_status != 'sent':
        deliver_invoice(invoice)
    return jsonify(invoice.to_dict()), 200


@invoices_bp.route('/admin/invoices/<string:invoice_id>', methods=['DELETE'])
@jwt_required
@admin_required
def delete_invoice(invoice_id):
    logger.warning("Received DELETE request for invoice ID: %s", invoice_id)
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice:
        return jsonify({'error': f"Invoice with ID {invoice_id} not found."}), 404

    if invoice.is_paid:
        logger.warning("Refused to delete paid invoice %s", invoice_id)
        return jsonify({'error': 'Paid invoices cannot be deleted'}), 400

    reference = invoice.reference_number
    db.session.delete(invoice)
    db.session.commit()
    logger.warning("Invoice %s deleted successfully.", invoice_id)

    broadcast('delete_invoices', {'id': invoice_id})
    record_audit('INVOICE_DELETED', request.current_user_email,
                 {'invoiceId': invoice_id, 'referenceNumber': reference})
    return jsonify({'message': f'Invoice {invoice_id} deleted successfully'}), 200


# =========================================================================
# 2. ADMIN: GENERATE FROM A PLAN (after subscription approval)
# =========================================================================
@invoices_bp.route('/invoices/generate', methods=['POST'])
@jwt_required
@admin_required
def generate_invoice():
    data = request.get_json(silent=True) or {}
    user_id = data.get('userId')
    project_id = data.get('projectId')
    plan = data.get('plan')

    if not all([user_id, project_id, plan]):
        return jsonify({'error': "userId, projectId and plan are required"}), 400

    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'error': "User not found"}), 404
    project = db.session.get(Project, project_id)
    if not project:
        return jsonify({'error': "Project not found"}), 404

    try:
        amount = plan_price(plan)
    except ApiError as e:
        return jsonify({'error': e.message}), e.status_code

    invoice = Invoice(
        reference_number=generate_reference_number(),
        user_id=user.id,
        project_id=project.id,
        amount=format_amount(amount),
        status='sent',
        due_date=datetime.utcnow() + timedelta(days=GENERATED_INVOICE_DUE_DAYS),
        description=obfuscate(f"{plan} package"),
        items=[{'description': f"{plan} package", 'quantity': 1, 'amount': format_amount(amount)}],
    )
    db.session.add(invoice)
    db.session.commit()

    logger.info("Generated invoice %s for project %s", invoice.reference_number, project.id)
    broadcast('new_invoice', invoice_event(invoice))
    record_audit('INVOICE_GENERATED', request.current_user_email,
                 {'invoiceId': invoice.id, 'referenceNumber': invoice.reference_number, 'plan': plan})
    deliver_invoice(invoice)
    return jsonify(invoice.to_dict()), 201


# =========================================================================
# 3. CLIENT: REQUEST / LIST / PAY
# =========================================================================
@invoices_bp.route('/invoices/request', methods=['POST'])
@jwt_required
@client_required
def request_invoice():
    user = get_current_user()
    data = request.get_json(silent=True) or {}
    message = (data.get('message') or '').strip()
    project_id = data.get('projectId')

    if not project_id:
        return jsonify({'error': "Please select a project"}), 400
    if not message:
        return jsonify({'error': "Please provide details for the invoice"}), 400

    project = db.session.get(Project, project_id)
    if not project or (project.user_id != user.id and (project.email or '').lower() != user.email):
        return jsonify({'error': "Project not found"}), 404

    subject = clean(data.get('subject') or 'Invoice Request')
    invoice = Invoice(
        reference_number=generate_reference_number(),
        user_id=user.id,
        project_id=project.id,
        amount='0.00',
        status='requested',
        description=obfuscate(f"{subject}: {clean(message)}"),
        items=[],
    )
    db.session.add(invoice)
    db.session.commit()

    logger.info("Invoice %s requested by %s", invoice.reference_number, user.email)
    broadcast('new_invoice_request', invoice_event(invoice))
    record_audit('INVOICE_REQUESTED', user.email,
                 {'invoiceId': invoice.id, 'projectId': project.id})
    notify_admins("Invoice requested",
                  f"{user.name or user.email} requested an invoice for '{project.name}'.")
    return jsonify({'message': 'Invoice request submitted', 'invoice': invoice.to_dict()}), 201


@invoices_bp.route('/client/invoices', methods=['GET'])
@jwt_required
def get_client_invoices():
    invoices = Invoice.query.filter_by(user_id=request.current_user_id) \
        .order_by(Invoice.created_at.desc()).all()
    return jsonify([inv.to_dict() for inv in invoices]), 200


@invoices_bp.route('/client/invoices/<string:invoice_id>/pay', methods=['POST'])
@jwt_required
def pay_invoice(invoice_id):
    user = get_current_user()
    data = request.get_json(silent=True) or {}
    method = clean(data.get('method') or '')

    # accept the reference number the client displays as well as the id
    invoice = db.session.get(Invoice, invoice_id) or \
        Invoice.query.filter_by(reference_number=invoice_id).first()
    if not invoice or invoice.user_id != user.id:
        return jsonify({'error': 'Invoice not found'}), 404

    if not method:
        return jsonify({'error': 'Payment method is required'}), 400
    if invoice.is_paid:
        return jsonify({'error': 'Invoice is already paid'}), 400
    if invoice.status == 'cancelled':
        return jsonify({'error': 'Cancelled invoices cannot be paid'}), 400

    invoice.status = 'Paid'
    db.session.commit()

    logger.info("Invoice %s paid by %s via %s", invoice.reference_number, user.email, method)
    broadcast('invoice_paid', invoice_event(invoice))
    # card details are never recorded
    record_audit('INVOICE_PAID', user.email,
                 {'invoiceId': invoice.id, 'referenceNumber': invoice.reference_number,
                  'amount': invoice.amount, 'method': method,
                  'reference': clean(data.get('reference') or '')})
    notify_admins("Invoice paid",
                  f"Invoice {invoice.reference_number} was paid by {user.name or user.email}.")
    return jsonify({'message': 'Payment successful', 'invoice': invoice.to_dict()}), 200
