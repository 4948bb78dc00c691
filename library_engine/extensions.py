from typing import Any, Dict

from flask import current_app
from flask_socketio import SocketIO

from library_engine.engine import LibraryEngine

# Initialize SocketIO without app binding
# Will be bound to app in create_app() function
socketio: SocketIO = SocketIO(
    cors_allowed_origins="*",
    async_mode='threading'
)


def member_room(member_id: int) -> str:
    return f"member_{member_id}"


def emit_member_event(event: str, member_id: int, payload: Dict[str, Any]) -> None:
    """Push a committed engine event to the member's room."""
    socketio.emit(event, payload, to=member_room(member_id))


def get_engine() -> LibraryEngine:
    """Engine bound to the current Flask app."""
    return current_app.extensions['library_engine']
