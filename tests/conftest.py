import hashlib
import hmac
import itertools
import threading
from datetime import date, timedelta

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.service import Service
from models.user import Role, User
from security.csrf import CSRF_COOKIE, CSRF_HEADER
from security.session import create_session
from services.payment_gateway import GatewayOrder, PaymentGateway
from security.rbac import seed_roles

FAKE_GATEWAY_SECRET = "fake_gateway_secret"
CSRF_TOKEN = "test-csrf-token"


def sign(order_id: str, payment_id: str, secret: str = FAKE_GATEWAY_SECRET) -> str:
    """Signature in the same shape Razorpay uses: HMAC-SHA256 over 'order|payment'."""
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


class FakeGateway(PaymentGateway):
    provider = "FAKE"

    def __init__(self):
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self.created = []

    def create_order(self, amount, currency, receipt=None, notes=None):
        with self._lock:
            order_id = f"order_fake_{next(self._ids):04d}"
            self.created.append({"order_id": order_id, "amount": amount, "currency": currency, "notes": notes})
        return GatewayOrder(order_id=order_id, amount=amount, currency=currency)

    def verify_signature(self, order_id, payment_id, signature):
        if not signature:
            return False
        return hmac.compare_digest(sign(order_id, payment_id), signature)


@pytest.fixture
def app(tmp_path):
    class _Config(TestConfig):
        # file database so worker threads get their own connections
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(tmp_path / "looklab-test.db")
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30, "check_same_thread": False}}

    app = create_app(_Config)
    with app.app_context():
        db.create_all()
        seed_roles()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def gateway(app):
    fake = FakeGateway()
    app.extensions["payment_gateway"] = fake
    return fake


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield


@pytest.fixture
def future_day():
    return date.today() + timedelta(days=30)


@pytest.fixture
def make_user(app):
    def _make(email, *role_names):
        with app.app_context():
            user = User(email=email, full_name=email.split("@")[0].title())
            names = role_names or ("CLIENT",)
            user.roles = Role.query.filter(Role.name.in_(names)).all()
            db.session.add(user)
            db.session.commit()
            return user.id
    return _make


@pytest.fixture
def client_id(make_user):
    return make_user("asha@example.com")


@pytest.fixture
def staff_id(make_user):
    return make_user("ravi@example.com", "STAFF")


@pytest.fixture
def admin_id(make_user):
    return make_user("meera@example.com", "ADMIN")


@pytest.fixture
def service_id(app):
    with app.app_context():
        service = Service(name="Signature Haircut", category="Cut", price=1000, duration_minutes=60)
        db.session.add(service)
        db.session.commit()
        return service.id


@pytest.fixture
def login(app):
    """Return a test client carrying a session for user_id plus the matching CSRF header."""
    def _login(user_id):
        with app.app_context():
            token = create_session(user_id)
        http = app.test_client()
        http.set_cookie(app.config["AUTH_COOKIE_NAME"], token)
        http.set_cookie(CSRF_COOKIE, CSRF_TOKEN)
        return http, {CSRF_HEADER: CSRF_TOKEN}
    return _login
