import threading
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import db
from models.session import Session
from utils.encoder import decode, encode
from utils.log import get_logger

logger = get_logger(__name__)

DEFAULT_CHECK_EXPIRATION_INTERVAL = 15 * 60
DEFAULT_EXPIRATION = 24 * 60 * 60


class SessionStore(Protocol):
    def get(self, session_id: str) -> Optional[dict]: ...

    def set(self, session_id: str, data: dict) -> Optional[str]: ...

    def destroy(self, session_id: str) -> None: ...

    def touch(self, session_id: str, data: dict) -> None: ...


class SqlSessionStore:
    """
    Server-side session rows keyed by session id.
    Must be used inside an application context.
    """

    def __init__(self, expiration: int = DEFAULT_EXPIRATION):
        self.expiration = expiration or DEFAULT_EXPIRATION

    def get(self, session_id: str) -> Optional[dict]:
        row = self._find(session_id)
        if not row:
            return None

        # expired but not swept yet
        if row.expires_at < datetime.utcnow():
            return None

        return decode(row.data)

    def set(self, session_id: str, data: dict) -> Optional[str]:
        expires_at = self.get_expires_at(data)
        blob = encode(data)

        try:
            row = self._find(session_id)
            if row:
                row.data = blob
                row.expires_at = expires_at
            else:
                row = Session(session_id=session_id, data=blob, expires_at=expires_at)
                db.session.add(row)
            db.session.commit()
        except IntegrityError:
            # another request created the row between our lookup and insert
            db.session.rollback()
            self._update(session_id, data=blob, expires_at=expires_at)
        except SQLAlchemyError:
            db.session.rollback()
            raise

        return blob

    def destroy(self, session_id: str) -> None:
        try:
            Session.query.filter_by(session_id=session_id).delete()
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

    def touch(self, session_id: str, data: dict) -> None:
        self._update(session_id, expires_at=self.get_expires_at(data))

    def clear_expired_sessions(self) -> int:
        try:
            removed = Session.query.filter(Session.expires_at < datetime.utcnow()).delete()
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return removed

    def get_expires_at(self, data: Optional[dict]) -> datetime:
        cookie = (data or {}).get("cookie") or {}
        expires = cookie.get("expires")
        if isinstance(expires, str) and expires:
            expires = self._parse_expires(expires)
        if isinstance(expires, datetime):
            if expires.tzinfo is not None:
                expires = expires.astimezone(timezone.utc).replace(tzinfo=None)
            return expires
        return datetime.utcnow() + timedelta(seconds=self.expiration)

    def _parse_expires(self, value: str) -> Optional[datetime]:
        # JS cookie layers write a trailing "Z", which fromisoformat only accepts on 3.11+
        if value.endswith(("Z", "z")):
            value = value[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            logger.warning("session_cookie_expires_unparseable", expires=value)
            return None

    def _find(self, session_id: str) -> Optional[Session]:
        return Session.query.filter_by(session_id=session_id).first()

    def _update(self, session_id: str, **values) -> None:
        try:
            Session.query.filter_by(session_id=session_id).update(values)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise


class ExpirationSweeper:
    """
    Deletes expired session rows once at start and then on a fixed interval.
    The app starts it on the first served request, never from CLI commands.
    A failed sweep is logged; the next one still runs.
    """

    def __init__(self, app, store: SqlSessionStore, interval: int = DEFAULT_CHECK_EXPIRATION_INTERVAL):
        self.app = app
        self.store = store
        self.interval = interval or DEFAULT_CHECK_EXPIRATION_INTERVAL
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        # called from every request; only the first one spawns the thread
        if self.running:
            return
        with self._lock:
            if self.running:
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name="session-sweeper", daemon=True)
            self._thread.start()

    def stop(self, timeout: float = None):
        self._stop.set()
        with self._lock:
            thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout)

    def sweep(self) -> int:
        with self.app.app_context():
            try:
                removed = self.store.clear_expired_sessions()
            except Exception:
                logger.exception("session_sweep_failed")
                return 0

        if removed:
            logger.info("session_sweep", removed=removed)
        return removed

    def _run(self):
        self.sweep()
        while not self._stop.wait(self.interval):
            self.sweep()
