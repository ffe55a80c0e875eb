from datetime import datetime, timedelta
from functools import wraps

from flask import current_app, jsonify, request
import jwt

from api.exception import NotFoundError
from models import User, db


client_token_expiry_time = timedelta(days=7)
admin_token_expiry_time = timedelta(hours=1)


def create_access_token(user, expires_in=None):
    if expires_in is None:
        expires_in = admin_token_expiry_time if user.role == 'admin' else client_token_expiry_time
    expiration = datetime.utcnow() + expires_in
    return jwt.encode(
        {'user_id': user.id, 'email': user.email, 'role': user.role, 'exp': expiration},
        current_app.config['JWT_SECRET_KEY'],
        algorithm='HS256'
    )


def decode_jwt(jwt_token, secret_key):
    try:
        return jwt.decode(jwt_token, secret_key, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        return {"message": "Token has expired"}
    except jwt.InvalidTokenError:
        return {"message": "Invalid token"}


def jwt_required(f):
    """Reject the request unless it carries a valid bearer token.

    A missing header is 401, a token that fails verification is 403. On
    success the caller's id, email and role are set on the request object.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authorization header is missing or invalid"}), 401

        token = auth_header.split(" ", 1)[1].strip()
        payload = decode_jwt(token, current_app.config['JWT_SECRET_KEY'])
        if 'message' in payload:
            return jsonify({"error": payload['message']}), 403

        user_id = payload.get("user_id")
        if not user_id:
            return jsonify({"error": "Unauthorized Token"}), 403

        request.current_user_id = user_id
        request.current_user_email = payload.get("email")
        request.current_user_role = payload.get("role", "client")

        return f(*args, **kwargs)
    return decorated_function


def get_current_user():
    user = db.session.get(User, request.current_user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def is_admin():
    return getattr(request, 'current_user_role', None) == 'admin'
