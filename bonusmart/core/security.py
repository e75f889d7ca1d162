"""Password hashing and the session token bound to login, password hash, client IP and salt."""

import hashlib
import hmac
import secrets
import string

import bcrypt

SALT_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase
SALT_LENGTH = 12
DEFAULT_BCRYPT_ROUNDS = 10


def hash_password(password: str, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def compare_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # stored value is not a bcrypt hash
        return False


def generate_salt(length: int = SALT_LENGTH) -> str:
    return "".join(secrets.choice(SALT_ALPHABET) for _ in range(length))


def _digest(login: str, password_hash: str, client_ip: str) -> bytes:
    return hashlib.md5((login + password_hash + client_ip).encode("utf-8")).digest()


def _sign(digest: bytes, salt: str) -> bytes:
    return hmac.new(salt.encode("utf-8"), digest, hashlib.sha256).digest()


def issue_session_token(login: str, password_hash: str, client_ip: str, salt: str) -> str:
    """Return ``hex(md5(login+hash+ip)) + ":" + hex(hmac_sha256(salt, digest))``.

    The token is only valid from the client IP it was issued to.
    """
    digest = _digest(login, password_hash, client_ip)
    return digest.hex() + ":" + _sign(digest, salt).hex()


def verify_session_token(token: str, login: str, password_hash: str, client_ip: str, salt: str) -> bool:
    data, sep, sign = token.partition(":")
    if not sep:
        return False
    digest = _digest(login, password_hash, client_ip)
    if not hmac.compare_digest(data.encode("utf-8"), digest.hex().encode("utf-8")):
        return False
    return hmac.compare_digest(sign.encode("utf-8"), _sign(digest, salt).hex().encode("utf-8"))
