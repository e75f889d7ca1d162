import asyncio

from bonusmart.core.exceptions import ConflictError, UnauthorizedError
from bonusmart.core.logging import get_logger
from bonusmart.core.security import (
    compare_password,
    generate_salt,
    hash_password,
    issue_session_token,
    verify_session_token,
)
from bonusmart.models.ledger import UserRecord
from bonusmart.storage.base import LedgerStore
from bonusmart.storage.errors import UserConflict, UserNotFound

log = get_logger(__name__)

USERNAME_COOKIE = "username"
SESSION_COOKIE = "user_id"


async def register_user(store: LedgerStore, login: str, password: str, rounds: int = 10) -> UserRecord:
    # bcrypt is CPU bound; keep it off the event loop
    password_hash = await asyncio.to_thread(hash_password, password, rounds)
    try:
        user = await store.create_user(login, password_hash, generate_salt())
    except UserConflict as e:
        log.info("user_exists", login=login)
        raise ConflictError("User already exists") from e
    log.info("user_registered", login=login)
    return user


async def login_user(store: LedgerStore, login: str, password: str) -> UserRecord:
    try:
        user = await store.get_user(login)
    except UserNotFound as e:
        log.info("login_unknown_user", login=login)
        raise UnauthorizedError("Wrong username or password") from e
    if not await asyncio.to_thread(compare_password, password, user.password_hash):
        log.info("login_wrong_password", login=login)
        raise UnauthorizedError("Wrong username or password")
    log.info("user_logged_in", login=login)
    return user


def session_cookies(user: UserRecord, client_ip: str) -> dict[str, str]:
    return {
        USERNAME_COOKIE: user.login,
        SESSION_COOKIE: issue_session_token(user.login, user.password_hash, client_ip, user.salt),
    }


async def authenticate(store: LedgerStore, username: str | None, token: str | None, client_ip: str) -> UserRecord:
    """Resolve the session cookies to a user or raise UnauthorizedError."""
    if not username or not token:
        raise UnauthorizedError()
    try:
        user = await store.get_user(username)
    except UserNotFound as e:
        log.debug("auth_unknown_user", login=username)
        raise UnauthorizedError() from e
    if not verify_session_token(token, username, user.password_hash, client_ip, user.salt):
        log.debug("auth_cookie_mismatch", login=username, client_ip=client_ip)
        raise UnauthorizedError()
    return user
