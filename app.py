import logging
import os

import click
from dotenv import load_dotenv
from flasgger import Swagger
from flask import Flask, jsonify
from flask_cors import CORS
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from api.exception import ApiError
from extensions import bcrypt, limiter, migrate, socketio
from models import User, db

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def load_config(app, test_config=None):
    app.config['SWAGGER'] = {
        'title': 'AkaTech Portal API',
        'uiversion': 3,
        'specs_route': '/apidocs/'
    }
    app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv('DATABASE_URI')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['SQLALCHEMY_ENGINE_OPTIONS'] = {
        'pool_recycle': 280
    }
    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY')
    app.config['SECRET_KEY'] = os.getenv('JWT_SECRET_KEY')
    app.config['ALLOWED_ORIGIN'] = os.getenv('ALLOWED_ORIGIN', '*')

    app.config['SMTP_SERVER'] = os.getenv("SMTP_SERVER", "smtp.gmail.com")
    app.config['SMTP_PORT'] = int(os.getenv("SMTP_PORT", "587"))
    app.config['EMAIL_SENDER'] = os.getenv("EMAIL_SENDER")
    app.config['EMAIL_PASSWORD'] = os.getenv("EMAIL_PASSWORD")

    app.config['GOOGLE_CLIENT_ID'] = os.getenv("GOOGLE_CLIENT_ID")
    app.config['ADMIN_EMAIL'] = os.getenv("ADMIN_EMAIL")
    app.config['ADMIN_PASSWORD'] = os.getenv("ADMIN_PASSWORD")
    app.config['RATE_LIMIT_PUBLIC'] = os.getenv("RATE_LIMIT_PUBLIC", "10 per minute")

    if test_config:
        app.config.update(test_config)

    if not app.config.get('TESTING'):
        if not app.config['SQLALCHEMY_DATABASE_URI']:
            raise RuntimeError("DATABASE_URI not found. Check your .env file!")
        if not app.config['JWT_SECRET_KEY']:
            raise RuntimeError("JWT_SECRET_KEY not found. Check your .env file!")


def register_blueprints(app):
    from auth.auth import auth_bp
    from routes.audit_log_routes import audit_log_bp
    from routes.dashboard_routes import dashboard_bp
    from routes.invoices_routes import invoices_bp
    from routes.messages_routes import messages_bp
    from routes.notifications_routes import notifications_bp
    from routes.projects_routes import projects_bp
    from routes.resources_routes import resources_bp
    from routes.signup_routes import signup_bp
    from routes.subscriptions_routes import subscriptions_bp
    from routes.tickets_routes import tickets_bp
    from routes.users_routes import users_bp

    app.register_blueprint(auth_bp, url_prefix='/api')
    app.register_blueprint(messages_bp, url_prefix='/api')
    app.register_blueprint(projects_bp, url_prefix='/api')
    app.register_blueprint(tickets_bp, url_prefix='/api')
    app.register_blueprint(notifications_bp, url_prefix='/api')
    app.register_blueprint(audit_log_bp, url_prefix='/api')
    app.register_blueprint(signup_bp, url_prefix='/api')
    app.register_blueprint(subscriptions_bp, url_prefix='/api')
    app.register_blueprint(invoices_bp, url_prefix='/api')
    app.register_blueprint(users_bp, url_prefix='/api')
    app.register_blueprint(dashboard_bp, url_prefix='/api')
    # /api/<resource>/<id> is the least specific route
    app.register_blueprint(resources_bp, url_prefix='/api')


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(e):
        return jsonify({"error": e.message}), e.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(e):
        db.session.rollback()
        logger.exception("Database error")
        return jsonify({"error": "Database error"}), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.description}), e.code
        logger.exception("Unhandled error")
        return jsonify({"error": "Internal server error"}), 500


def register_commands(app):
    @app.cli.command('create-admin')
    @click.option('--email', default=None, help='Admin email, defaults to ADMIN_EMAIL.')
    @click.option('--password', default=None, help='Admin password, defaults to ADMIN_PASSWORD.')
    @click.option('--name', default='Administrator')
    def create_admin(email, password, name):
        """Create an admin user, or promote an existing account."""
        from auth.auth import MIN_PASSWORD_LENGTH, hash_password, normalize_email

        email = normalize_email(email or app.config.get('ADMIN_EMAIL'))
        password = password or app.config.get('ADMIN_PASSWORD')
        if not email or not password:
            raise click.UsageError("Provide --email/--password or set ADMIN_EMAIL and ADMIN_PASSWORD")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise click.UsageError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        user = User.query.filter_by(email=email).first()
        if user is None:
            user = User(email=email, name=name, account_type='email')
            db.session.add(user)
        user.role = 'admin'
        user.password_hash = hash_password(password)
        db.session.commit()
        logger.info("Admin account ready: %s", email)
        click.echo(f"Admin account ready: {email}")


def create_app(test_config=None):
    app = Flask(__name__)
    load_config(app, test_config)

    Swagger(app)
    CORS(app, origins=app.config['ALLOWED_ORIGIN'])

    db.init_app(app)
    migrate.init_app(app, db)
    bcrypt.init_app(app)
    limiter.init_app(app)
    socketio.init_app(app, cors_allowed_origins=app.config['ALLOWED_ORIGIN'])

    # socket handlers register on import
    import realtime  # noqa: F401

    register_blueprints(app)
    register_error_handlers(app)
    register_commands(app)

    #create tables
    with app.app_context():
        db.create_all()
        logger.info("Tables created successfully")

    return app


if __name__ == "__main__":
    app = create_app()
    socketio.run(app, debug=os.getenv('FLASK_DEBUG') == '1')
