"""Password hashing and session token generation."""

import secrets
import bcrypt

SESSION_TOKEN_BYTES = 32  # 256 bits of entropy


# ==================== Password Hashing ====================

def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a plain text password with a fresh bcrypt salt for storage."""
    # bcrypt requires bytes and returns bytes
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain text password against a stored bcrypt hash."""
    try:
        return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))
    except ValueError:
        # Malformed stored hash
        return False


# ==================== Session Tokens ====================

def generate_session_token() -> str:
    """Return an unguessable, URL-safe session token."""
    return secrets.token_urlsafe(SESSION_TOKEN_BYTES)
