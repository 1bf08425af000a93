from .db import db
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .session import Session
from .service import Service
from .slot import SlotCounter
from .booking import Booking
from .payment import PaymentOrder
