import logging

import click
from flask import Flask, jsonify
from flask_migrate import Migrate
from sqlalchemy import inspect

from config import Config
from routes import health_bp, session_bp, booking_bp, admin_bp, webhook_bp

from models import db
from models.service import Service
from models.user import User, Role
from security.csrf import csrf_protect
from security.rbac import load_current_user, seed_roles
from services import get_allocator, get_orchestrator
from services.errors import BookingError
from services.orchestrator import parse_date
from services.payment_gateway import GatewayError

logger = logging.getLogger(__name__)


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(session_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(webhook_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Seed default roles once the schema exists (safe & idempotent)
    with app.app_context():
        if inspect(db.engine).has_table("roles"):
            seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    @app.before_request
    def _csrf_protect():
        return csrf_protect()

    @app.errorhandler(BookingError)
    def _booking_error(exc):
        db.session.rollback()
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(GatewayError)
    def _gateway_error(exc):
        db.session.rollback()
        logger.error("Payment gateway error: %s", exc)
        return jsonify(error="Payment gateway unavailable", code="GatewayError"), 502

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------

def register_cli(app):
    @app.cli.command("add-user")
    @click.argument("email")
    @click.option("--name", default=None, help="Full name")
    def add_user(email, name):
        """Register a user row mirrored from the identity service."""
        email = email.strip().lower()
        if User.query.filter_by(email=email).first():
            click.echo("User already exists")
            return
        user = User(email=email, full_name=name)
        client_role = Role.query.filter_by(name="CLIENT").first()
        if client_role:
            user.roles.append(client_role)
        db.session.add(user)
        db.session.commit()
        click.echo(f"{user.email} added (id={user.id})")

    @app.cli.command("make-staff")
    @click.argument("email")
    @click.option("--admin", is_flag=True, help="Grant ADMIN instead of STAFF")
    def make_staff(email, admin):
        """Promote a user to STAFF (or ADMIN) by email."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return

        role_name = "ADMIN" if admin else "STAFF"
        role = Role.query.filter_by(name=role_name).first()
        if not role:
            role = Role(name=role_name)
            db.session.add(role)
            db.session.commit()

        if role not in user.roles:
            user.roles.append(role)
            db.session.commit()

        click.echo(f"{user.email} promoted to {role_name}")

    @app.cli.command("issue-session")
    @click.argument("email")
    def issue_session(email):
        """Mint a session token for a user (local testing without the identity service)."""
        from security.session import create_session

        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return
        click.echo(create_session(user.id))

    @app.cli.command("add-service")
    @click.argument("name")
    @click.argument("price", type=int)
    @click.option("--duration", default=60, type=int, help="Duration in minutes")
    @click.option("--category", default=None)
    def add_service(name, price, duration, category):
        """Add a catalog entry; PRICE is in the smallest currency unit."""
        if price <= 0:
            raise click.BadParameter("price must be positive", param_hint="PRICE")
        service = Service(name=name.strip(), price=price, duration_minutes=duration, category=category)
        db.session.add(service)
        db.session.commit()
        click.echo(f"Service {service.name} added (id={service.id})")

    @app.cli.command("expire-orders")
    def expire_orders():
        """Expire advance orders that were never paid within the TTL."""
        count = get_orchestrator().expire_pending_orders()
        click.echo(f"{count} pending order(s) expired")

    @app.cli.command("slot-report")
    @click.argument("date")
    def slot_report(date):
        """Print counters against a recount of active bookings for DATE."""
        try:
            day = parse_date(date)
        except BookingError as exc:
            raise click.BadParameter(exc.message, param_hint="DATE")

        allocator = get_allocator()
        ledger = get_orchestrator().ledger
        counters = allocator.counts(day)
        drift = False
        for label in allocator.time_labels:
            counter = counters.get(label, 0)
            active = ledger.count_active(day, label)
            flag = "" if counter == active else "  <-- MISMATCH"
            drift = drift or bool(flag)
            click.echo(f"{label:>9}  {counter}/{allocator.capacity}  ledger={active}{flag}")
        if drift:
            raise SystemExit(1)

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5000)
