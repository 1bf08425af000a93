from .health import health_bp
from .session import session_bp
from .booking import booking_bp
from .admin import admin_bp
from .stripe_webhook import webhook_bp
