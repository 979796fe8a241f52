from .db import db


class KeyValueRecord(db.Model):
    __tablename__ = "kv_records"

    # Monotonic id doubles as the scan cursor, so ids are never reused
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    key = db.Column(db.String(255), nullable=False, unique=True, index=True)
    value = db.Column(db.Text, nullable=False)
    expires_at = db.Column(db.BigInteger, nullable=True, index=True)  # epoch ms, NULL = permanent

    __table_args__ = {"sqlite_autoincrement": True}
