from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from bonusmart.core.config import Settings
from bonusmart.core.exceptions import BadRequestError
from bonusmart.deps import client_ip, get_app_settings, get_store, read_json
from bonusmart.models.ledger import UserRecord
from bonusmart.services import users as user_service
from bonusmart.storage.base import LedgerStore

router = APIRouter()


class Credentials(BaseModel):
    login: str = ""
    password: str = ""


def _session_response(request: Request, user: UserRecord) -> Response:
    response = Response(status_code=200)
    for name, value in user_service.session_cookies(user, client_ip(request)).items():
        # session cookies: no Max-Age
        response.set_cookie(key=name, value=value, path="/")
    return response


async def _read_credentials(request: Request) -> Credentials:
    creds = await read_json(request, Credentials)
    if not creds.login or not creds.password:
        raise BadRequestError("Incorrect request format")
    return creds


@router.post("/register")
async def register(
    request: Request,
    store: LedgerStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    """Create a user and start a session."""
    creds = await _read_credentials(request)
    user = await user_service.register_user(store, creds.login, creds.password, settings.bcrypt_rounds)
    return _session_response(request, user)


@router.post("/login")
async def login(request: Request, store: LedgerStore = Depends(get_store)):
    """Check credentials and start a session bound to the caller's IP."""
    creds = await _read_credentials(request)
    user = await user_service.login_user(store, creds.login, creds.password)
    return _session_response(request, user)
