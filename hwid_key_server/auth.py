import base64
import hmac
import secrets

KEY_BYTES = 24


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def generate_key() -> str:
    """
    URL-safe activation key: 24 random bytes, base64url without padding (32 chars).
    """
    return _b64(secrets.token_bytes(KEY_BYTES))


def keys_match(presented: str, stored: str) -> bool:
    return hmac.compare_digest(presented.encode("utf-8"), stored.encode("utf-8"))


def admin_token_valid(header: str, admin_token: str) -> bool:
    # An unset server token rejects everyone
    if not admin_token or not header:
        return False
    return hmac.compare_digest(header.encode("utf-8"), admin_token.encode("utf-8"))


def mask(secret: str) -> str:
    """Loggable prefix of a secret."""
    return f"{secret[:4]}..." if secret else ""
