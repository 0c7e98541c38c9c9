from models.db import db

class Token(db.Model):
    __tablename__ = "tokens"
    __table_args__ = (
        # one live token per provider/user pair, enforced by the database
        db.UniqueConstraint("provider", "user_id", name="uq_tokens_provider_user"),
    )

    id = db.Column(db.Integer, primary_key=True)

    provider = db.Column(db.String(64), nullable=False)
    user_id = db.Column(db.String(255), nullable=False)

    # opaque bearer credential; overwritten in place on regenerate
    token = db.Column(db.String(128), unique=True, nullable=False, index=True)
