"""
Password hashing and session token signing.
"""

import hashlib
import hmac
import logging
import secrets
from typing import Optional

logger = logging.getLogger(__name__)

PBKDF2_ALGORITHM = "pbkdf2_sha256"
PBKDF2_ITERATIONS = 260_000


def hash_password(password: str, iterations: int = PBKDF2_ITERATIONS) -> str:
    """
    Hash a password with a random salt.

    Returns:
        Encoded hash: pbkdf2_sha256$<iterations>$<salt>$<hex digest>
    """
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations
    ).hex()
    return f"{PBKDF2_ALGORITHM}${iterations}${salt}${digest}"


def verify_password(password: str, encoded: str) -> bool:
    """Check a password against an encoded hash in constant time."""
    try:
        algorithm, iterations, salt, expected = encoded.split("$")
    except ValueError:
        logger.warning("Malformed password hash")
        return False
    if algorithm != PBKDF2_ALGORITHM:
        return False
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), int(iterations)
    ).hex()
    return hmac.compare_digest(digest, expected)


def sign_session(user_id: str, secret: str) -> str:
    """Build a session token `<user_id>.<hex HMAC-SHA256 of user_id>`."""
    signature = hmac.new(
        secret.encode("utf-8"),
        user_id.encode("utf-8"),
        hashlib.sha256
    ).hexdigest()
    return f"{user_id}.{signature}"


def read_session(token: str, secret: str) -> Optional[str]:
    """
    Verify a session token.

    Returns:
        The user id if the signature is valid, None otherwise
    """
    user_id, _, signature = token.rpartition(".")
    if not user_id or not signature:
        return None

    expected_signature = hmac.new(
        secret.encode("utf-8"),
        user_id.encode("utf-8"),
        hashlib.sha256
    ).hexdigest()

    # Use constant-time comparison to prevent timing attacks
    if not hmac.compare_digest(expected_signature, signature):
        logger.info("Session signature verification: invalid")
        return None
    return user_id
