from flask import Blueprint, jsonify, request, current_app
import time

from quarterclock.validation import (
    validate_create_request,
    validate_score_request,
    validate_timer_action,
)


clocks = Blueprint('clocks', __name__)

# HTTP action name -> registry method
_ACTIONS = {
    'start': 'start',
    'pause': 'pause',
    'nextQuarter': 'next_quarter',
    'reset': 'reset',
}


def _registry():
    return current_app.extensions['clock_registry']


def _events():
    return current_app.extensions['event_service']


def _debounced(action: str, event_id: str, controller_id) -> bool:
    try:
        debounce_ms = int(current_app.config.get('CONTROLLER_DEBOUNCE_MS', 0))
    except Exception:
        debounce_ms = 0
    if debounce_ms <= 0:
        return False
    last_actions = current_app.extensions.setdefault('controller_debounce', {})
    key = f"{action}:{event_id}:{controller_id}"
    now = time.time() * 1000.0
    if now - last_actions.get(key, 0) < debounce_ms:
        return True
    last_actions[key] = now
    return False


@clocks.route('', methods=['POST'])
def create_event():
    data = request.get_json(silent=True) or {}
    result = validate_create_request(data, current_app.config.get('ALLOWED_QUARTER_LENGTHS'))
    if not result.is_valid:
        return jsonify({'error': result.error}), 400
    body = result.value
    event = _events().create_event(body['teamA'], body['teamB'], body['settings'])
    current_app.logger.info(f"[create] event={event['id']} teams={body['teamA']}/{body['teamB']}")
    return jsonify({'success': True, 'game': event}), 201


@clocks.route('', methods=['GET'])
def list_events():
    return jsonify({'games': _events().all_events()})


@clocks.route('/<string:event_id>', methods=['GET'])
def get_event(event_id):
    event = _events().get_event(event_id)
    if event is None:
        return jsonify({'error': 'Game not found'}), 404
    return jsonify(event)


@clocks.route('/<string:event_id>', methods=['DELETE'])
def delete_event(event_id):
    if not _events().delete_event(event_id):
        return jsonify({'error': 'Game not found'}), 404
    return jsonify({'success': True})


@clocks.route('/<string:event_id>/score', methods=['POST'])
def update_score(event_id):
    result = validate_score_request(request.get_json(silent=True))
    if not result.is_valid:
        return jsonify({'error': result.error}), 400
    event = _events().update_score(event_id, result.value['team'], result.value['points'])
    if event is None:
        return jsonify({'error': 'Game not found'}), 404
    return jsonify({'success': True, 'game': event})


@clocks.route('/<string:event_id>/timer', methods=['GET'])
def get_timer(event_id):
    state = _registry().get_state(event_id)
    if state is None:
        return jsonify({'error': 'Game not found'}), 404
    return jsonify(state)


@clocks.route('/<string:event_id>/timer', methods=['POST'])
def control_timer(event_id):
    data = request.get_json(silent=True) or {}
    result = validate_timer_action(data.get('action'))
    if not result.is_valid:
        return jsonify({'error': result.error}), 400
    action = result.value

    if _debounced(action, event_id, data.get('controller_id')):
        return jsonify({'message': 'debounced'}), 202

    registry = _registry()
    if action == 'sync':
        partial = data.get('state')
        if not isinstance(partial, dict):
            return jsonify({'error': 'sync requires a state object'}), 400
        try:
            state = registry.sync(event_id, partial)
        except (TypeError, ValueError) as exc:
            return jsonify({'error': f'Invalid state: {exc}'}), 400
    else:
        state = getattr(registry, _ACTIONS[action])(event_id)

    if state is None:
        return jsonify({'error': 'Game not found'}), 404
    current_app.logger.info(
        f"[timer] event={event_id} action={action} quarter={state['current_quarter']} status={state['status']} remaining={state['time_remaining']}"
    )
    return jsonify({'success': True, 'timer': state})
