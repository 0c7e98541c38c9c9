import secrets

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import db
from models.token import Token
from security import handshake
from utils.log import get_logger

logger = get_logger(__name__)


class TokenNotFoundError(LookupError):
    def __init__(self, token: str):
        super().__init__(f"Could not find existing token {token}")
        self.token = token


def generate_token() -> str:
    # 256 random bits, url-safe so it survives cookies, query strings and headers
    return secrets.token_urlsafe(32)


class TokenService:
    """
    Owns the tokens table. Every other component goes through here to
    create, look up or rotate socket tokens.
    """

    def find_or_create(self, **where) -> str:
        """
        Returns the token for the key (normally provider + user_id),
        creating one with a fresh random value if none exists yet.
        """
        row = Token.query.filter_by(**where).first()
        if row is None:
            row = self._create(where)
        return row.token

    def find(self, **where):
        row = Token.query.filter_by(**where).first()
        return row.token if row else None

    def regenerate(self, token: str) -> str:
        row = Token.query.filter_by(token=token).first()
        if row is None:
            raise TokenNotFoundError(token)

        row.token = generate_token()
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

        logger.info("token_regenerated", provider=row.provider, user_id=row.user_id)
        return row.token

    def revoke(self, token: str) -> bool:
        try:
            removed = Token.query.filter_by(token=token).delete()
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

        if removed:
            logger.info("token_revoked")
        return bool(removed)

    def authorize(self, success=None, fail=None):
        return handshake.authorize(self, success=success, fail=fail)

    def _create(self, where: dict) -> Token:
        row = Token(token=generate_token(), **where)
        db.session.add(row)
        try:
            db.session.commit()
        except IntegrityError:
            # Lost a race with a concurrent login for the same key: use the winner's row.
            db.session.rollback()
            row = Token.query.filter_by(**where).first()
            if row is None:
                raise
            return row
        except SQLAlchemyError:
            db.session.rollback()
            raise

        logger.info("token_created", provider=row.provider, user_id=row.user_id)
        return row
