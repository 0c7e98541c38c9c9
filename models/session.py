from models.db import db

class Session(db.Model):
    __tablename__ = "sessions"

    session_id = db.Column(db.String(128), primary_key=True)

    expires_at = db.Column(db.DateTime, nullable=False, index=True)

    # encoded session payload, see utils.encoder
    data = db.Column(db.Text, nullable=True)
