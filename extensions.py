from flask import current_app
from flask_bcrypt import Bcrypt
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from flask_socketio import SocketIO

bcrypt = Bcrypt()
migrate = Migrate()
socketio = SocketIO()
limiter = Limiter(key_func=get_remote_address)


def public_limit():
    """Rate limit applied to unauthenticated form posts."""
    return current_app.config.get('RATE_LIMIT_PUBLIC', '10 per minute')
