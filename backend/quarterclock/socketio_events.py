from flask_socketio import join_room, leave_room, emit
from flask import current_app

from quarterclock import socketio
from quarterclock.services.clock import ClockEvent, ClockStatus, remaining_seconds


NAMESPACE = '/ws'


def room_for(event_id: str) -> str:
    return f"game:{event_id}"


def state_payload(event: ClockEvent) -> dict:
    """Same shape as ``ClockRegistry.get_state`` so push and poll are interchangeable."""
    state = event.resulting_state
    remaining = remaining_seconds(state, event.timestamp)
    return {
        'event_id': event.event_id,
        'time_remaining': remaining,
        'is_running': state.is_running,
        'current_quarter': state.current_quarter,
        'status': state.status.value,
        'is_expired': remaining <= 0,
        'is_game_finished': state.status == ClockStatus.FINISHED,
        'type': event.type.value,
        'source': event.source.value,
    }


def broadcast_clock_event(event: ClockEvent) -> None:
    # Registry listener: runs inside the clock's notification path, so keep it to one emit
    socketio.emit('state_update', state_payload(event), to=room_for(event.event_id), namespace=NAMESPACE)


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_game(data):
    event_id = (data or {}).get('event_id')
    if not event_id:
        emit('error', {'message': 'event_id is required'})
        return
    room = room_for(event_id)
    join_room(room)
    emit('joined', {'room': room})
    state = current_app.extensions['clock_registry'].get_state(event_id)
    if state is None:
        emit('error', {'message': 'Game not found', 'event_id': event_id})
        return
    emit('state_update', state)


def handle_leave_game(data):
    event_id = (data or {}).get('event_id')
    if not event_id:
        emit('error', {'message': 'event_id is required'})
        return
    room = room_for(event_id)
    leave_room(room)
    emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    namespaces = [NAMESPACE, '/'] if testing else [NAMESPACE]
    for namespace in namespaces:
        socketio.on_event('connect', handle_connect, namespace=namespace)
        socketio.on_event('join_game', handle_join_game, namespace=namespace)
        socketio.on_event('leave_game', handle_leave_game, namespace=namespace)
        socketio.on_event('ping', handle_ping, namespace=namespace)
