from datetime import datetime
from models.db import db

class SlotCounter(db.Model):
    """Active-booking count for one (date, time label) bucket.

    Rows are created lazily the first time a slot is reserved. The count is
    only ever changed by conditional UPDATEs in services.slot_allocator.
    """
    __tablename__ = "slot_counters"

    id = db.Column(db.Integer, primary_key=True)

    date = db.Column(db.Date, nullable=False, index=True)
    time_label = db.Column(db.String(20), nullable=False)
    active_count = db.Column(db.Integer, default=0, nullable=False)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("date", "time_label", name="uq_slot_counter_key"),
        db.CheckConstraint("active_count >= 0", name="ck_slot_counter_non_negative"),
    )
