from datetime import datetime, timezone
import json

from quarterclock import db


def _utcnow():
    return datetime.now(timezone.utc)


class Snapshot(db.Model):
    """One whole collection (all events, or all clocks) stored as JSON.

    Collections are read and written as a unit; last writer wins.
    """
    __tablename__ = 'snapshot'
    name = db.Column(db.String(64), primary_key=True)
    payload = db.Column(db.Text, nullable=False, default='[]')
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def records(self):
        return json.loads(self.payload or '[]')

    def to_dict(self):
        return {
            'name': self.name,
            'count': len(self.records()),
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
