"""
Library Lending Engine - Flask Application
Main application file
"""
import atexit
import logging

from flask import Flask, jsonify
from flask_socketio import join_room, leave_room

from library_engine.config.config import Config
from library_engine.engine import LibraryEngine
from library_engine.errors import LibraryError
from library_engine.extensions import emit_member_event, member_room, socketio
from library_engine.models.database import close_db, pop_database, push_database
from library_engine.scheduled_tasks import shutdown_scheduler, start_scheduler

logger = logging.getLogger(__name__)

# HTTP status per error kind
STATUS_BY_KIND = {
    'not_found': 404,
    'invalid_state': 409,
    'ineligible': 403,
    'conflict': 409,
    'validation_error': 400,
}


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def create_app(config_object=None, overrides=None) -> Flask:
    """Build the Flask app around a LibraryEngine.

    Args:
        config_object: Config class to load (defaults to Config).
        overrides: Extra settings applied after the config class.
    """
    app = Flask(__name__)
    app.config.from_object(config_object or Config)
    if overrides:
        app.config.update(overrides)

    configure_logging(app.config.get('LOG_LEVEL', 'INFO'))

    engine = LibraryEngine(
        app.config['DATABASE_PATH'],
        notifier=emit_member_event,
        busy_timeout=app.config.get('DATABASE_BUSY_TIMEOUT'),
    )
    engine.initialize(seed=app.config.get('SEED_REFERENCE_DATA', False))
    app.extensions['library_engine'] = engine

    from library_engine.routes.admin_routes import admin_bp
    from library_engine.routes.circulation_routes import circulation_bp
    app.register_blueprint(circulation_bp, url_prefix='/api')
    app.register_blueprint(admin_bp, url_prefix='/api/admin')

    register_error_handlers(app)

    # ============= Request scope =============

    @app.before_request
    def bind_database():
        """Resolve model calls in this request against the engine's database"""
        push_database(engine.database_path, engine.busy_timeout)

    @app.teardown_request
    def unbind_database(exception):
        pop_database()

    # ============= Teardown =============

    @app.teardown_appcontext
    def close_connection(exception):
        """Close database connection"""
        close_db(exception)

    socketio.init_app(app)

    # Start scheduled background tasks
    start_scheduler(app)

    logger.info("Library engine ready (database %s)", app.config['DATABASE_PATH'])
    return app


def register_error_handlers(app: Flask) -> None:

    @app.errorhandler(LibraryError)
    def handle_library_error(error):
        status = STATUS_BY_KIND.get(error.kind, 400)
        logger.warning("Rejected %s: %s", error.code, error.message)
        return jsonify({'success': False, **error.to_dict()}), status

    @app.errorhandler(404)
    def not_found(error):
        """404 error handler"""
        return jsonify({'success': False, 'error': 'not_found', 'message': 'Not found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        """500 error handler"""
        return jsonify({'success': False, 'error': 'internal_error',
                        'message': 'Internal server error'}), 500


# ============= SocketIO Events =============

@socketio.on('join')
def handle_join(data):
    """Subscribe the client to a member's event room"""
    member_id = (data or {}).get('member_id')
    if member_id is None:
        return {'success': False, 'message': 'member_id is required'}
    join_room(member_room(member_id))
    return {'success': True, 'room': member_room(member_id)}


@socketio.on('leave')
def handle_leave(data):
    member_id = (data or {}).get('member_id')
    if member_id is not None:
        leave_room(member_room(member_id))


# Ensure scheduler shuts down gracefully
atexit.register(shutdown_scheduler)


if __name__ == '__main__':
    app = create_app()
    socketio.run(app, debug=False, host='0.0.0.0', port=5000, allow_unsafe_werkzeug=True)
