import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app import create_app  # noqa: E402
from config import Config  # noqa: E402
from models import db  # noqa: E402
from security.tokens import TokenService  # noqa: E402


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    AUTO_CREATE_TABLES = True
    SESSION_SWEEPER_ENABLED = False

    LOGIN_ENABLED = True
    LOGIN_PROVIDERS = {"twitch": {"enabled": True}, "steam": {"enabled": False}}
    BASE_URL = "localhost:9090"
    SSL_ENABLED = False
    SESSION_COOKIE_SECURE = False


def make_app(config_object=TestingConfig):
    return create_app(config_object)


@pytest.fixture
def app():
    app = make_app()
    yield app
    app.extensions["session_sweeper"].stop(timeout=1)
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def tokens(app_ctx):
    return TokenService()


def login_as(client, **identity):
    """Simulate the identity-provider integration having logged someone in."""
    user = {"id": "42", "provider": "twitch", "allowed": True}
    user.update(identity)
    with client.session_transaction() as sess:
        sess["user"] = user


def set_cookie_headers(resp, name):
    return [h for h in resp.headers.getlist("Set-Cookie") if h.startswith(name + "=")]
