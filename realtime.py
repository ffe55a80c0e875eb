# realtime.py
"""Dashboard refresh events.

Every mutating endpoint calls :func:`broadcast` after its commit. Delivery is
best effort: no rooms, no acknowledgement and no replay for clients that were
disconnected when the event fired.
"""
import logging

from flask import request

from extensions import socketio

logger = logging.getLogger(__name__)


def broadcast(event, payload):
    try:
        socketio.emit(event, payload)
        logger.info("Broadcast %s", event)
    except Exception:
        # socket failures never fail the request
        logger.exception("Failed to broadcast %s", event)


@socketio.on('connect')
def handle_connect():
    logger.info("Dashboard client connected: %s", request.sid)


@socketio.on('disconnect')
def handle_disconnect(*args):
    logger.info("Dashboard client disconnected: %s", request.sid)
