"""
Slot capacity accounting.

Each (date, time label) bucket has one SlotCounter row holding the number of
active bookings. try_reserve/release are single conditional UPDATEs, so the
database serialises concurrent callers on the row and the count can never
pass capacity. Neither commits: they run inside the caller's transaction so
a reservation and its Booking row land (or roll back) together. A missing
counter row is inserted in that same transaction first.
"""
import logging
from datetime import date as date_type, datetime

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from models import db
from models.slot import SlotCounter
from services.errors import CapacityExceededError, ValidationError

logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {"sqlite": sqlite_insert, "postgresql": pg_insert}


class SlotAllocator:
    def __init__(self, capacity: int, time_labels):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.time_labels = list(time_labels)

    def validate_label(self, time_label: str) -> str:
        label = (time_label or "").strip()
        if label not in self.time_labels:
            raise ValidationError(f"Unknown time slot: {time_label!r}")
        return label

    def counts(self, day: date_type) -> dict:
        rows = SlotCounter.query.filter_by(date=day).all()
        return {r.time_label: r.active_count for r in rows}

    def list_slots(self, day: date_type):
        counts = self.counts(day)
        out = []
        for label in self.time_labels:
            remaining = self.capacity - counts.get(label, 0)
            out.append({
                "time": label,
                "remaining": max(remaining, 0),
                "isFull": remaining <= 0,
            })
        return out

    def is_full(self, day: date_type, time_label: str) -> bool:
        row = SlotCounter.query.filter_by(date=day, time_label=time_label).first()
        return row is not None and row.active_count >= self.capacity

    def _add_counter(self, day: date_type, time_label: str) -> None:
        dialect = db.session.get_bind().dialect.name
        insert = _UPSERT_INSERTS.get(dialect)
        if insert is None:
            raise RuntimeError(f"Slot counters need INSERT .. ON CONFLICT support, not {dialect}")
        db.session.execute(
            insert(SlotCounter)
            .values(date=day, time_label=time_label, active_count=0, updated_at=datetime.utcnow())
            .on_conflict_do_nothing(index_elements=["date", "time_label"])
        )

    def try_reserve(self, day: date_type, time_label: str) -> bool:
        self._add_counter(day, time_label)
        result = db.session.execute(
            update(SlotCounter)
            .where(
                SlotCounter.date == day,
                SlotCounter.time_label == time_label,
                SlotCounter.active_count < self.capacity,
            )
            .values(active_count=SlotCounter.active_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info("Slot %s %s full", day, time_label)
            raise CapacityExceededError(f"Slot {time_label} on {day.isoformat()} is full")
        return True

    def release(self, day: date_type, time_label: str) -> bool:
        result = db.session.execute(
            update(SlotCounter)
            .where(
                SlotCounter.date == day,
                SlotCounter.time_label == time_label,
                SlotCounter.active_count > 0,
            )
            .values(active_count=SlotCounter.active_count - 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("Release on empty slot %s %s", day, time_label)
            return False
        return True
