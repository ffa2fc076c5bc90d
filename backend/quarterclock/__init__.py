from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import atexit
import json
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Import and register blueprints here
    from quarterclock.main import main
    flask_app.register_blueprint(main)

    from quarterclock.api.clocks import clocks
    # Mount clock routes under /api to match frontend API client
    flask_app.register_blueprint(clocks, url_prefix='/api/games')

    from quarterclock.socketio_events import register_socketio_handlers, broadcast_clock_event
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    # One registry per app; handlers reach it through flask_app.extensions
    from quarterclock.services.clock import ClockRegistry, RegistrySettings
    from quarterclock.services.events import EventService
    from quarterclock.services.storage import build_storage

    storage = build_storage(flask_app)
    registry = ClockRegistry(
        storage,
        settings=RegistrySettings.from_config(flask_app.config),
        listeners=[broadcast_clock_event],
    )
    event_service = EventService(storage)
    event_service.bind(registry)
    flask_app.extensions['clock_registry'] = registry
    flask_app.extensions['event_service'] = event_service

    if flask_app.config.get('CLOCK_MAINTENANCE_ENABLED') and not flask_app.config.get('TESTING'):
        registry.start_maintenance(socketio.start_background_task)
        atexit.register(registry.shutdown)
        flask_app.logger.info(
            f"[registry-init] backend={flask_app.config.get('STORAGE_BACKEND')} max={registry.settings.max_instances} "
            f"ttl={registry.settings.eviction_ttl}s autosave={registry.settings.autosave_interval}s"
        )

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        with flask_app.app_context():
            registry.shutdown()
            db.drop_all()
            db.create_all()
            storage.events.collection.drop_cache()
            storage.clocks.collection.drop_cache()

            # Seed a demo game
            event = event_service.create_event('Home', 'Away')
            print(f"Database has been reset and seeded! demo game: {event['id']}")

    @click.command('clock-stats')
    def clock_stats_command():
        """Prints registry memory stats and stored record counts."""
        print(json.dumps({
            'memory': registry.get_memory_stats(),
            'events': len(storage.events.all()),
            'clocks': len(storage.clocks.all()),
        }, indent=2))

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(clock_stats_command)

    return flask_app
