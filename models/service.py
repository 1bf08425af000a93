from datetime import datetime
from models.db import db

class Service(db.Model):
    __tablename__ = "services"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    category = db.Column(db.String(40), nullable=True)  # e.g. Cut, Color, Spa
    description = db.Column(db.Text, nullable=True)

    price = db.Column(db.Integer, nullable=False)  # smallest unit (paise)
    duration_minutes = db.Column(db.Integer, nullable=False, default=60)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint("price > 0", name="ck_services_price_positive"),
    )
