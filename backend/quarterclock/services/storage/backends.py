import json
import logging
import os
from typing import Dict, List, Optional


logger = logging.getLogger(__name__)


class StorageError(Exception):
    """A durable store could not be read or written."""


class MemoryBackend:
    """Process-local stand-in for a durable store (tests, `memory` mode)."""

    def __init__(self):
        self._data: Dict[str, List[dict]] = {}
        self.fail_reads = False
        self.fail_writes = False

    def bind(self, name: str) -> 'MemoryCollection':
        return MemoryCollection(self, name)


class MemoryCollection:
    def __init__(self, backend: MemoryBackend, name: str):
        self.backend = backend
        self.name = name

    def read(self) -> Optional[List[dict]]:
        if self.backend.fail_reads:
            raise StorageError(f'{self.name}: read unavailable')
        records = self.backend._data.get(self.name)
        return json.loads(json.dumps(records)) if records is not None else None

    def write(self, records: List[dict]) -> None:
        if self.backend.fail_writes:
            raise StorageError(f'{self.name}: write unavailable')
        self.backend._data[self.name] = json.loads(json.dumps(records))


class FileBackend:
    """JSON file holding a whole collection; writes go through a temp file
    and an atomic rename so a crash never leaves a half-written file."""

    def __init__(self, path: str):
        self.path = path

    def read(self) -> Optional[List[dict]]:
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            raise StorageError(f'{self.path}: {exc}') from exc
        if not isinstance(data, list):
            raise StorageError(f'{self.path}: expected a list, got {type(data).__name__}')
        return data

    def write(self, records: List[dict]) -> None:
        tmp = self.path + '.tmp'
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(tmp, 'w') as f:
                json.dump(records, f, indent=2)
            os.replace(tmp, self.path)
        except OSError as exc:
            try:
                if os.path.exists(tmp):
                    os.remove(tmp)
            except OSError:
                pass
            raise StorageError(f'{self.path}: {exc}') from exc


class DatabaseBackend:
    """A collection kept as one row of the ``snapshot`` table.

    Runs inside ``app.app_context()`` so background jobs can call it.
    """

    def __init__(self, app, name: str):
        self.app = app
        self.name = name

    def read(self) -> Optional[List[dict]]:
        from quarterclock import db
        from quarterclock.models import Snapshot

        with self.app.app_context():
            try:
                row = db.session.get(Snapshot, self.name)
                return row.records() if row is not None else None
            except Exception as exc:
                db.session.rollback()
                raise StorageError(f'snapshot {self.name}: {exc}') from exc

    def write(self, records: List[dict]) -> None:
        from quarterclock import db
        from quarterclock.models import Snapshot

        with self.app.app_context():
            try:
                row = db.session.get(Snapshot, self.name)
                if row is None:
                    row = Snapshot(name=self.name)
                row.payload = json.dumps(records)
                db.session.add(row)
                db.session.commit()
            except Exception as exc:
                db.session.rollback()
                raise StorageError(f'snapshot {self.name}: {exc}') from exc
