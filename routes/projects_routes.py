import logging

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from auth.authhelpers import is_admin, jwt_required
from decoraters import admin_required
from extensions import limiter, public_limit
from models import Project, User, db
from realtime import broadcast
from routes.audit_log_routes import record_audit
from routes.notifications_routes import notify_user
from utils.obfuscation import obfuscate
from utils.sanitize import clean

projects_bp = Blueprint('projects', __name__)
logger = logging.getLogger(__name__)

PROJECT_STATUSES = ('pending', 'approved', 'in-progress', 'completed', 'rejected')


def ensure_own_email(email):
    """Clients may only read records filed under their own email; admins read any."""
    if not email:
        return jsonify({"error": "Email is required"}), 400
    if not is_admin() and email.lower() != (request.current_user_email or '').lower():
        return jsonify({"error": "Unauthorized"}), 403
    return None


# --- Public project request from the pricing page ---
@projects_bp.route('/projects', methods=['POST'])
@limiter.limit(public_limit)
def request_project():
    data = request.get_json(silent=True) or {}
    name = data.get('name')
    email = data.get('email')
    plan = data.get('plan')

    if not all([name, email, plan]):
        return jsonify({"error": "Name, email, and plan are required."}), 400

    email = clean(email).lower()
    owner = User.query.filter_by(email=email).first()
    project = Project(
        user_id=owner.id if owner else None,
        name=clean(name),
        email=email,
        company=clean(data.get('company') or ''),
        plan=clean(plan),
        notes=obfuscate(clean(data.get('notes') or '')),
        status='pending',
        ip=request.remote_addr,
    )
    try:
        db.session.add(project)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to store project request")
        return jsonify({"error": "Failed to submit project request."}), 500

    logger.info("Project request %s received for plan %s", project.id, project.plan)
    broadcast('new_project', project.to_dict())
    return jsonify({"message": "Project request received.", "id": project.id}), 201


@projects_bp.route('/projects', methods=['GET'])
@projects_bp.route('/admin/projects', methods=['GET'])
@jwt_required
@admin_required
def get_all_projects():
    projects = Project.query.order_by(Project.created_at.desc()).all()
    return jsonify([p.to_dict() for p in projects]), 200


@projects_bp.route('/client/projects', methods=['GET'])
@jwt_required
def get_client_projects():
    email = request.args.get('email') or request.current_user_email
    denied = ensure_own_email(email)
    if denied:
        return denied

    projects = Project.query.filter_by(email=email.lower()) \
        .order_by(Project.created_at.desc()).all()
    return jsonify([p.to_dict() for p in projects]), 200


@projects_bp.route('/admin/projects/<string:project_id>', methods=['PATCH'])
@jwt_required
@admin_required
def update_project(project_id):
    project = db.session.get(Project, project_id)
    if not project:
        return jsonify({"error": "Project not found"}), 404

    data = request.get_json(silent=True) or {}
    previous_status = project.status

    if 'status' in data:
        if data['status'] not in PROJECT_STATUSES:
            return jsonify({"error": f"Invalid status: {data['status']}"}), 400
        project.status = data['status']
    if 'plan' in data:
        project.plan = clean(data['plan'])
    if 'name' in data:
        project.name = clean(data['name'])
    if 'company' in data:
        project.company = clean(data['company'])
    if 'notes' in data:
        project.notes = obfuscate(clean(data['notes']))

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to update project %s", project_id)
        return jsonify({"error": "Failed to update project"}), 500

    logger.info("Project %s updated", project_id)
    broadcast('update_projects', project.to_dict())
    record_audit('PROJECT_UPDATED', request.current_user_email,
                 {'projectId': project.id, 'changes': sorted(data.keys())})

    if project.status != previous_status and project.user_id:
        notify_user(project.user_id, "Project status updated",
                    f"Your project '{project.name}' is now {project.status}.")
    return jsonify(project.to_dict()), 200


@projects_bp.route('/admin/projects/<string:project_id>', methods=['DELETE'])
@jwt_required
@admin_required
def delete_project(project_id):
    logger.warning("Received DELETE request for project ID: %s", project_id)
    project = db.session.get(Project, project_id)
    if not project:
        return jsonify({"error": "Project not found"}), 404

    for invoice in project.invoices:
        invoice.project_id = None
    db.session.delete(project)
    db.session.commit()

    broadcast('delete_projects', {'id': project_id})
    record_audit('PROJECT_DELETED', request.current_user_email, {'projectId': project_id})
    return jsonify({"message": f"Project {project_id} deleted successfully"}), 200
