from flask import Blueprint, jsonify
from sqlalchemy import func

from auth.authhelpers import jwt_required
from decoraters import admin_required
from models import Project, User, db

users_bp = Blueprint('users', __name__)


@users_bp.route('/users', methods=['GET'])
@jwt_required
@admin_required
def get_all_users():
    users = User.query.order_by(User.created_at.desc()).all()
    return jsonify([u.to_dict() for u in users]), 200


@users_bp.route('/clients', methods=['GET'])
@users_bp.route('/admin/clients', methods=['GET'])
@jwt_required
@admin_required
def get_all_clients():
    """
    Client accounts with their project count
    ---
    tags:
      - Users
    responses:
      200:
        description: Every client-role user, newest first, with projectCount.
    """
    project_counts = db.session.query(Project.user_id, func.count(Project.id)) \
        .group_by(Project.user_id).all()
    counts = {user_id: count for user_id, count in project_counts}

    clients = User.query.filter_by(role='client').order_by(User.created_at.desc()).all()
    result = []
    for client in clients:
        client_dict = client.to_dict()
        client_dict['projectCount'] = counts.get(client.id, 0)
        result.append(client_dict)
    return jsonify(result), 200
