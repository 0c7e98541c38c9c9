import secrets
from datetime import datetime, timezone

from flask.sessions import SessionInterface, SessionMixin
from itsdangerous import BadSignature, Signer
from werkzeug.datastructures import CallbackDict

from security.session_store import SessionStore

# Reserved payload key carrying cookie metadata (expiry) alongside session data.
COOKIE_KEY = "cookie"


class StoreSession(CallbackDict, SessionMixin):
    """Session dict backed by a server-side row; only its id lives in the cookie."""

    def __init__(self, initial=None, sid=None, store=None, new=False):
        def on_update(self):
            self.modified = True

        super().__init__(initial, on_update)
        self.sid = sid
        self.store = store
        self.new = new
        self.modified = False
        self.destroyed = False

    def destroy(self):
        """Drop the server-side row now and clear the cookie on the way out."""
        if self.sid and self.store is not None:
            self.store.destroy(self.sid)
        self.clear()
        self.destroyed = True
        self.modified = False


class StoreSessionInterface(SessionInterface):
    session_class = StoreSession
    salt = "dashgate-session"

    def __init__(self, store: SessionStore):
        self.store = store

    def _signer(self, app):
        if not app.secret_key:
            return None
        return Signer(app.secret_key, salt=self.salt, key_derivation="hmac")

    def _new_sid(self) -> str:
        return secrets.token_urlsafe(32)

    def open_session(self, app, request):
        signer = self._signer(app)
        if signer is None:
            return None

        cookie = request.cookies.get(self.get_cookie_name(app))
        sid = None
        if cookie:
            try:
                sid = signer.unsign(cookie).decode("utf-8")
            except BadSignature:
                sid = None

        if sid:
            data = self.store.get(sid)
            if data is not None:
                data.pop(COOKIE_KEY, None)
                return self.session_class(data, sid=sid, store=self.store)

        return self.session_class(sid=self._new_sid(), store=self.store, new=True)

    def save_session(self, app, session, response):
        name = self.get_cookie_name(app)
        domain = self.get_cookie_domain(app)
        path = self.get_cookie_path(app)
        secure = self.get_cookie_secure(app)
        samesite = self.get_cookie_samesite(app)
        httponly = self.get_cookie_httponly(app)

        if session.destroyed or (not session and session.modified):
            if not session.destroyed and not session.new:
                self.store.destroy(session.sid)
            response.delete_cookie(
                name, domain=domain, path=path, secure=secure, samesite=samesite, httponly=httponly
            )
            return

        if not session:
            return

        expires = self.get_expiration_time(app, session)
        payload = dict(session)
        payload[COOKIE_KEY] = {"expires": _isoformat(expires), "path": path}

        if session.modified or session.new:
            self.store.set(session.sid, payload)
        elif self.should_set_cookie(app, session):
            self.store.touch(session.sid, payload)
        else:
            return

        response.set_cookie(
            name,
            self._signer(app).sign(session.sid).decode("utf-8"),
            expires=expires,
            httponly=httponly,
            domain=domain,
            path=path,
            secure=secure,
            samesite=samesite,
        )
        response.vary.add("Cookie")


def _isoformat(expires):
    if not isinstance(expires, datetime):
        return None
    if expires.tzinfo is not None:
        # stored rows use naive UTC
        expires = expires.astimezone(timezone.utc).replace(tzinfo=None)
    return expires.isoformat()
