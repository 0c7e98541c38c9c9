from functools import wraps

from flask import after_this_request, current_app, g, redirect, request, session
from sqlalchemy.exc import SQLAlchemyError

from config import LoginSettings
from security.tokens import TokenService
from utils.auth_context import is_authenticated
from utils.log import get_logger

logger = get_logger(__name__)

SOCKET_TOKEN_COOKIE = "socketToken"
EXTENSION_KEY = "auth_gate"


class AuthGate:
    """
    Decides whether a dashboard request may proceed.

    A socket token (``?key=`` or the ``socketToken`` cookie) wins over a
    logged-in identity; an unknown token destroys the session and clears the
    cookie so a stale value can't cause a login redirect loop.
    """

    def __init__(self, settings: LoginSettings, tokens: TokenService):
        self.settings = settings
        self.tokens = tokens

    def init_app(self, app):
        app.extensions[EXTENSION_KEY] = self

    def check(self):
        """Returns None to let the request through, or a redirect response."""
        if not self.settings.enabled:
            return None

        try:
            return self._check()
        except SQLAlchemyError:
            logger.exception("auth_gate_storage_error", path=request.path)
            return redirect(self.settings.login_path)

    def _check(self):
        presented = request.args.get("key") or request.cookies.get(SOCKET_TOKEN_COOKIE)
        if presented:
            token = self.tokens.find(token=presented)
            if token:
                self.set_token_cookie(token)
                return None

            logger.warning("auth_gate_unknown_token", path=request.path)
            self.destroy_session()
            return self.clear_token_cookie(redirect(self.settings.login_path))

        user = g.user if is_authenticated() else None
        if (
            user is not None
            and user.allowed
            and user.user_id
            and self.settings.provider_enabled(user.provider)
        ):
            token = self.tokens.find_or_create(provider=user.provider, user_id=user.user_id)
            self.set_token_cookie(token)
            return None

        session["returnTo"] = request.url
        return redirect(self.settings.login_path)

    def _cookie_options(self) -> dict:
        return {
            "path": "/",
            "domain": self.settings.cookie_domain,
            "secure": self.settings.ssl_enabled,
        }

    def set_token_cookie(self, token: str):
        """Schedule the socketToken cookie; the last token set in a request wins."""
        scheduled = "socket_token" in g
        g.socket_token = token
        if scheduled:
            return

        options = self._cookie_options()

        @after_this_request
        def _refresh_cookie(resp):
            resp.set_cookie(SOCKET_TOKEN_COOKIE, g.socket_token, **options)
            return resp

    def clear_token_cookie(self, resp):
        resp.delete_cookie(SOCKET_TOKEN_COOKIE, **self._cookie_options())
        return resp

    def destroy_session(self):
        destroy = getattr(session, "destroy", None)
        if callable(destroy):
            destroy()
        else:
            session.clear()
        g.user = None


def auth_check(fn):
    """
    Usage: @auth_check
    Runs the app's AuthGate before the view.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        gate = current_app.extensions[EXTENSION_KEY]
        failure = gate.check()
        if failure is not None:
            return failure
        return fn(*args, **kwargs)
    return wrapper
