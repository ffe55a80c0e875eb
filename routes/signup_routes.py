from datetime import datetime, timedelta
import logging

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from auth.auth import MIN_PASSWORD_LENGTH, hash_password, is_valid_email, normalize_email, verify_google_credential
from auth.authhelpers import create_access_token, decode_jwt
from models import SignupProgress, User, db
from realtime import broadcast
from routes.audit_log_routes import record_audit
from routes.notifications_routes import notify_admins
from routes.subscriptions_routes import create_subscription_record
from utils.obfuscation import obfuscate_json
from utils.plans import PRICING_PACKAGES, find_plan
from utils.sanitize import clean

signup_bp = Blueprint('signup', __name__)
logger = logging.getLogger(__name__)

SIGNUP_PROGRESS_TTL = timedelta(hours=72)


def _proves_ownership(user, data):
    """Return None when the caller holds the account, otherwise an error response.

    A Google credential for the same email, or a bearer token for the same
    user, both count as proof.
    """
    if data.get('credential'):
        claims = verify_google_credential(data['credential'])
        if normalize_email(claims.get('email')) != user.email:
            return jsonify({"error": "Google account does not match this email"}), 403
        return None

    auth_header = request.headers.get('Authorization') or ''
    if auth_header.startswith('Bearer '):
        payload = decode_jwt(auth_header.split(' ', 1)[1].strip(), current_app.config['JWT_SECRET_KEY'])
        if payload.get('user_id') != user.id:
            return jsonify({"error": "Token does not belong to this account"}), 403
        return None

    return jsonify({"error": "Sign in with Google to finish this signup"}), 401


@signup_bp.route('/plans', methods=['GET'])
def get_plans():
    """
    Pricing packages offered on the signup wizard
    ---
    tags:
      - Signup
    responses:
      200:
        description: Package name, price, description and features.
    """
    return jsonify(PRICING_PACKAGES), 200


@signup_bp.route('/signup/verify-google', methods=['POST'])
def verify_google():
    data = request.get_json(silent=True) or {}
    claims = verify_google_credential(data.get('credential'))
    return jsonify({
        "email": normalize_email(claims.get('email')),
        "name": claims.get('name'),
        "picture": claims.get('picture'),
    }), 200


@signup_bp.route('/signup/progress', methods=['POST'])
def save_progress():
    data = request.get_json(silent=True) or {}
    email = normalize_email(data.get('email'))
    if not is_valid_email(email):
        return jsonify({"error": "A valid email is required"}), 400

    progress = SignupProgress.query.filter_by(email=email).first()
    if progress is None:
        progress = SignupProgress(email=email)
        db.session.add(progress)

    progress.data = obfuscate_json(data.get('data') or {})
    if data.get('step') is not None:
        progress.step = str(data['step'])
    progress.updated_at = datetime.utcnow()

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to save signup progress for %s", email)
        return jsonify({"error": "Failed to save progress"}), 500

    return jsonify({"message": "Progress saved", "updatedAt": progress.to_dict()['updatedAt']}), 200


@signup_bp.route('/signup/progress', methods=['GET'])
def get_progress():
    """
    Resume a saved signup
    ---
    tags:
      - Signup
    parameters:
      - name: email
        in: query
        type: string
        required: true
    responses:
      200:
        description: Saved wizard state.
      404:
        description: Nothing saved for this email.
      410:
        description: Saved state was older than 72 hours and has been discarded.
    """
    email = normalize_email(request.args.get('email'))
    if not email:
        return jsonify({"error": "Email is required"}), 400

    progress = SignupProgress.query.filter_by(email=email).first()
    if progress is None:
        return jsonify({"error": "No signup progress found"}), 404

    last_touched = progress.updated_at or progress.created_at
    if last_touched and datetime.utcnow() - last_touched > SIGNUP_PROGRESS_TTL:
        logger.info("Discarding expired signup progress for %s", email)
        db.session.delete(progress)
        db.session.commit()
        return jsonify({"error": "Signup progress expired"}), 410

    return jsonify(progress.to_dict()), 200


@signup_bp.route('/signup/complete', methods=['POST'])
def complete_signup():
    data = request.get_json(silent=True) or {}
    email = normalize_email(data.get('email'))
    final = data.get('finalData') or {}

    name = clean(final.get('name'))
    password = final.get('password')
    package = find_plan(final.get('selectedPackage'))

    if not is_valid_email(email):
        return jsonify({"error": "A valid email is required"}), 400
    if not name:
        return jsonify({"error": "Name is required"}), 400
    if package is None:
        return jsonify({"error": "Please select a valid package"}), 400
    if password and len(password) < MIN_PASSWORD_LENGTH:
        return jsonify({"error": f"Password must be at least {MIN_PASSWORD_LENGTH} characters"}), 400

    user = User.query.filter_by(email=email).first()
    if user and user.password_hash:
        return jsonify({"error": "An account with this email already exists"}), 409
    # accounts created through Google have no password; only their owner may finish them
    if user is not None:
        error = _proves_ownership(user, data)
        if error:
            logger.warning("Rejected signup completion for existing account %s", email)
            return error
    elif not password:
        return jsonify({"error": "Password is required"}), 400

    if user is None:
        user = User(email=email, role='client', account_type='email')
        db.session.add(user)
    user.name = name
    if password:
        user.password_hash = hash_password(password)
    if final.get('companyName'):
        user.company = clean(final['companyName'])
    if final.get('phone'):
        user.phone = clean(final['phone'])

    db.session.flush()
    subscription = create_subscription_record(
        user, package['name'],
        details=clean(final.get('notes')) if final.get('notes') else None,
    )
    SignupProgress.query.filter_by(email=email).delete()

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to complete signup for %s", email)
        return jsonify({"error": "Failed to complete signup"}), 500

    logger.info("Signup completed for %s on %s", email, package['name'])
    notify_admins("New signup", f"{name} ({email}) signed up for {package['name']}.")
    record_audit('SIGNUP_COMPLETED', email, {'userId': user.id, 'plan': package['name'],
                                             'subscriptionId': subscription.id})
    broadcast('new_user', user.to_dict())
    broadcast('new_subscription', subscription.to_dict())

    return jsonify({
        "token": create_access_token(user),
        "user": user.to_dict(),
        "subscription": subscription.to_dict(),
    }), 201
