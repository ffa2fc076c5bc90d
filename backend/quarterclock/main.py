from flask import Blueprint, jsonify, current_app

from quarterclock.models import Snapshot

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the quarterclock server!'})


@main.route('/api/debug/storage')
def debug_storage():
    registry = current_app.extensions['clock_registry']
    storage = registry.storage
    backend = current_app.config.get('STORAGE_BACKEND', 'database')
    snapshots = []
    if backend == 'database':
        snapshots = [row.to_dict() for row in Snapshot.query.order_by(Snapshot.name).all()]
    return jsonify({
        'backend': backend,
        'memory': registry.get_memory_stats(),
        'events': len(storage.events.all()),
        'clocks': len(storage.clocks.all()),
        'snapshots': snapshots,
        'intervals': {
            'eviction_ttl': registry.settings.eviction_ttl,
            'sweep': registry.settings.sweep_interval,
            'autosave': registry.settings.autosave_interval,
            'controller_poll': current_app.config.get('CONTROLLER_POLL_INTERVAL_SEC'),
            'observer_poll': current_app.config.get('OBSERVER_POLL_INTERVAL_SEC'),
        },
    })
