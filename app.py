# app.py
from __future__ import annotations

import os

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
from flask_cors import CORS

from config import Config
from db import db, migrate
from realtime import socketio
from services.errors import ZestError

# Ensure models are imported so Flask-Migrate sees them
from models.event import Event, Activity, Session, TicketType
from models.booking import Booking, Attendee
from models.ticket import Ticket
from models.entry_log import EntryLog

# Blueprints
from routes.tickets import tickets_bp
from routes.bookings import bookings_bp
from routes.payments import payments_bp
from routes.maintenance import maintenance_bp

# Background tasks / CLI
from tasks.expire_tickets import expire_tickets_for_past_events


def create_app(config_object=Config) -> Flask:
    app = Flask(__name__)

    # Respect reverse proxy headers (scheme / host) for correct URL generation
    app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)  # type: ignore[arg-type]

    # CORS (open for now; tighten origins for production)
    CORS(app, resources={r"/*": {"origins": "*"}})

    # Load config + init extensions
    app.config.from_object(config_object)
    db.init_app(app)
    migrate.init_app(app, db)
    socketio.init_app(app, cors_allowed_origins="*")

    with app.app_context():
        # Touch models so Alembic/Flask-Migrate registers them
        _ = (Event, Activity, Session, TicketType, Booking, Attendee, Ticket, EntryLog)

    # Health check
    @app.route("/")
    def health_check():
        return jsonify(status="ok", service=app.config.get("APP_NAME", "Zest")), 200

    @app.errorhandler(404)
    def handle_404(e):
        return jsonify(error="Not Found", path=request.path), 404

    # Domain errors that escape a route keep their code and status
    @app.errorhandler(ZestError)
    def handle_zest_error(e: ZestError):
        return jsonify(e.to_dict()), e.status

    # Global error handler
    @app.errorhandler(Exception)
    def handle_any_error(e: Exception):
        if isinstance(e, HTTPException):
            return jsonify(error=e.description), e.code
        app.logger.exception("[app] unhandled error on %s %s", request.method, request.path)
        return jsonify(error="Internal server error"), 500

    # Register blueprints
    app.register_blueprint(tickets_bp,     url_prefix="/tickets")
    app.register_blueprint(bookings_bp)
    app.register_blueprint(payments_bp,    url_prefix="/payment")
    app.register_blueprint(maintenance_bp, url_prefix="/maintenance")

    # CLI: persist expiry for tickets whose sessions are over
    @app.cli.command("expire-tickets")
    def expire_tickets_cmd():
        result = expire_tickets_for_past_events()
        print(f"Expired {result['updated']} tickets ({result['errors']} errors).")

    return app


# Optional local entrypoint (useful for quick dev runs)
if __name__ == "__main__":
    app = create_app()
    # Socket.IO server (falls back to Werkzeug in dev)
    socketio.run(
        app,
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "5000")),
        allow_unsafe_werkzeug=True,  # dev convenience
        debug=bool(os.environ.get("FLASK_DEBUG", "")),
    )
