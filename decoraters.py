# decorators.py
from functools import wraps
from flask import request, jsonify


def role_required(*roles):
    """
    A decorator to check that the caller's token carries one of the given roles.
    It must sit below @jwt_required so the role is already on the request.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            role = getattr(request, 'current_user_role', None)
            if role is None:
                return jsonify({"error": "Unauthorized: User not identified"}), 401

            if role not in roles:
                return jsonify({"error": f"Forbidden: requires role {' or '.join(roles)}"}), 403

            return f(*args, **kwargs)
        return decorated_function
    return decorator


admin_required = role_required('admin')
client_required = role_required('client', 'admin')
