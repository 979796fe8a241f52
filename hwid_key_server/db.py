from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def normalize_database_uri(url: str) -> str:
    """
    Hosted Postgres providers hand out 'postgres://' URLs;
    SQLAlchemy only accepts 'postgresql://'.
    An empty value falls back to a local sqlite file.
    """
    url = (url or "").strip()
    if not url:
        return "sqlite:///hwid_keys.db"

    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)

    return url
