from dataclasses import asdict, dataclass
from typing import Optional

from flask import g, session

# Session key the identity-provider integration stores the logged-in identity under.
IDENTITY_SESSION_KEY = "user"


@dataclass(frozen=True)
class Identity:
    id: Optional[str] = None
    provider: str = "none"
    allowed: bool = False
    username: Optional[str] = None

    @property
    def user_id(self) -> Optional[str]:
        value = self.id or self.username
        return str(value) if value is not None else None

    @classmethod
    def from_dict(cls, data: dict) -> "Identity":
        return cls(
            id=data.get("id"),
            provider=data.get("provider") or "none",
            allowed=bool(data.get("allowed", False)),
            username=data.get("username"),
        )


def load_current_user():
    raw = session.get(IDENTITY_SESSION_KEY)
    g.user = Identity.from_dict(raw) if isinstance(raw, dict) else None


def login_user(identity: Identity):
    """Called by the identity-provider integration once a user has authenticated."""
    session[IDENTITY_SESSION_KEY] = asdict(identity)
    session.permanent = True
    g.user = identity


def is_authenticated() -> bool:
    return getattr(g, "user", None) is not None
