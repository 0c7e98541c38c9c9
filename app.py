import click
from flask import Flask
from flask_migrate import Migrate

from config import Config, LoginSettings
from models import db
from routes import auth_bp, dashboard_bp, health_bp
from security.auth_gate import AuthGate
from security.session_interface import StoreSessionInterface
from security.session_store import ExpirationSweeper, SqlSessionStore
from security.tokens import TokenNotFoundError, TokenService
from utils.auth_context import load_current_user
from utils.log import configure_logging, get_logger

logger = get_logger(__name__)


def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    configure_logging(app.config.get("LOG_LEVEL"), app.config.get("LOG_JSON"))

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(dashboard_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    if app.config.get("AUTO_CREATE_TABLES", False):
        with app.app_context():
            db.create_all()

    # Server-side sessions
    session_store = SqlSessionStore(expiration=app.config.get("SESSION_EXPIRATION"))
    app.session_interface = StoreSessionInterface(session_store)
    app.extensions["session_store"] = session_store

    sweeper = ExpirationSweeper(
        app, session_store, interval=app.config.get("SESSION_CHECK_EXPIRATION_INTERVAL")
    )
    app.extensions["session_sweeper"] = sweeper

    # Auth gate over the token store, configured explicitly from app config
    tokens = TokenService()
    app.extensions["tokens"] = tokens
    AuthGate(LoginSettings.from_app_config(app.config), tokens).init_app(app)

    # Sweeper starts with the first served request, so CLI commands (db upgrade) never run it
    if app.config.get("SESSION_SWEEPER_ENABLED", True):
        @app.before_request
        def _start_sweeper():
            sweeper.start()

    @app.before_request
    def _load_user():
        load_current_user()

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        return resp

    register_cli(app)

    logger.info(
        "app_created",
        login_enabled=app.config.get("LOGIN_ENABLED"),
        sweeper=app.config.get("SESSION_SWEEPER_ENABLED"),
    )
    return app

#-------------------------

def register_cli(app):
    @app.cli.command("regenerate-token")
    @click.argument("token")
    def regenerate_token(token):
        """Replace a socket token with a freshly generated one."""
        try:
            new_token = app.extensions["tokens"].regenerate(token)
        except TokenNotFoundError as exc:
            raise click.ClickException(str(exc))
        click.echo(new_token)

    @app.cli.command("revoke-token")
    @click.argument("token")
    def revoke_token(token):
        """Delete a socket token."""
        if not app.extensions["tokens"].revoke(token):
            raise click.ClickException("Token not found")
        click.echo("Token revoked")

    @app.cli.command("clear-expired-sessions")
    def clear_expired_sessions():
        """Run one expired-session sweep now."""
        removed = app.extensions["session_store"].clear_expired_sessions()
        click.echo(f"Removed {removed} expired session(s)")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=9090)
