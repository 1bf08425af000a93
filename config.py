import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _csv(value: str):
    return [part.strip() for part in value.split(",") if part.strip()]


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as looklab.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "looklab.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Session cookie name for our auth token
    AUTH_COOKIE_NAME = "looklab_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 20 minutes
    IDLE_TIMEOUT_SECONDS = 20 * 60

    # Session/cookie security defaults
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = False  # set True when using HTTPS

    # Slots: one facility, fixed daily labels, one capacity per label
    SLOT_CAPACITY = int(os.getenv("SLOT_CAPACITY", "4"))
    SLOT_TIME_LABELS = _csv(os.getenv(
        "SLOT_TIME_LABELS",
        "10:00 AM,11:00 AM,12:00 PM,02:00 PM,03:00 PM,04:00 PM,05:00 PM,06:00 PM",
    ))

    # Two-phase payment
    ADVANCE_RATIO = float(os.getenv("ADVANCE_RATIO", "0.8"))
    CURRENCY = os.getenv("CURRENCY", "INR")
    PENDING_ORDER_TTL_SECONDS = int(os.getenv("PENDING_ORDER_TTL_SECONDS", "900"))  # 15 minutes

    # Cancellation policy (client-initiated only)
    CANCEL_CUTOFF_HOURS = int(os.getenv("CANCEL_CUTOFF_HOURS", "12"))

    # Payment gateway: "razorpay" or "stripe"
    PAYMENT_PROVIDER = os.getenv("PAYMENT_PROVIDER", "razorpay").lower()
    RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID")
    RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET")
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

    # Basic app settings
    DEBUG = False
    TESTING = False


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SLOT_CAPACITY = 4
    SLOT_TIME_LABELS = ["10:00 AM", "11:00 AM", "12:00 PM"]
    ADVANCE_RATIO = 0.8
    CURRENCY = "INR"
    PAYMENT_PROVIDER = "razorpay"
    RAZORPAY_KEY_ID = "rzp_test_key"
    RAZORPAY_KEY_SECRET = "rzp_test_secret"
    STRIPE_WEBHOOK_SECRET = "whsec_test"
