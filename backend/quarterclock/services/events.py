import logging
from typing import List, Optional

from quarterclock.services.clock import ClockCallbacks


logger = logging.getLogger(__name__)


class EventService(ClockCallbacks):
    """Event metadata (team names, score, settings) alongside its clock.

    Also receives the registry's side-effect callbacks so the event record
    follows quarter changes and the end of the game.
    """

    def __init__(self, storage, registry=None):
        self.storage = storage
        self.registry = registry

    def bind(self, registry) -> None:
        self.registry = registry
        registry.callbacks = self

    def on_quarter_advance(self, event_id: str, new_quarter: int) -> None:
        self.storage.events.update_quarter(event_id, new_quarter)
        logger.info(f"[event-quarter] event={event_id} quarter={new_quarter}")

    def on_event_finished(self, event_id: str) -> None:
        record = self.storage.events.get(event_id)
        if record is None or record.get('status') == 'finished':
            return
        self.storage.events.end_event(event_id)
        logger.info(f"[event-finished] event={event_id}")

    def create_event(self, display_name_a: str, display_name_b: str, settings: Optional[dict] = None) -> dict:
        record = self.storage.events.create_event(display_name_a, display_name_b, settings)
        cfg = record['settings']
        self.registry.create(record['id'], float(cfg['quarterLengthMinutes']) * 60, int(cfg['totalQuarters']))
        return self.get_event(record['id'])

    def _combine(self, record: dict, clock_state: Optional[dict]) -> dict:
        payload = dict(record)
        if clock_state is None:
            return payload
        payload.update({
            'time_remaining': clock_state['time_remaining'],
            'is_running': clock_state['is_running'],
            'is_expired': clock_state['is_expired'],
            'is_game_finished': clock_state['is_game_finished'],
            'clock': clock_state,
        })
        return payload

    def get_event(self, event_id: str) -> Optional[dict]:
        # read the clock first: settling an expiry or restoring may update the record
        clock_state = self.registry.get_state(event_id)
        record = self.storage.events.get(event_id)
        if record is None:
            return None
        return self._combine(record, clock_state)

    def update_score(self, event_id: str, team: str, points: int) -> Optional[dict]:
        if self.storage.events.update_score(event_id, team, points) is None:
            return None
        return self.get_event(event_id)

    def delete_event(self, event_id: str) -> bool:
        self.registry.delete(event_id)
        deleted = self.storage.events.delete(event_id)
        logger.info(f"[event-delete] event={event_id} deleted={deleted}")
        return deleted

    def all_events(self) -> List[dict]:
        events = []
        for record in self.storage.events.all():
            event = self.get_event(record['id'])
            if event is not None:
                events.append(event)
        return events
