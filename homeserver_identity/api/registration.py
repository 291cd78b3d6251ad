# homeserver_identity/api/registration.py
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from starlette.concurrency import run_in_threadpool

from .models import AvailableResponse, RegisterRequest, RegisterResponse, RegistrationKind
from ..auth.errors import (
    GuestAccessForbiddenError,
    InvalidUsernameError,
    MissingParamError,
    UserInUseError,
    store_error_to_http,
)
from ..auth.tokens import AccessTokenManager
from ..dependencies import get_password_hasher, get_store, get_token_manager
from ..identity.credentials import AbstractPasswordHasher
from ..identity.models import Principal, generate_device_id, validate_localpart
from ..storage.errors import InvalidSyntaxError, StoreError
from ..storage.storage_interfaces import AbstractStore

logger = logging.getLogger(__name__)
registration_router = APIRouter(tags=["Registration"])


def _checked_localpart(username: str, server_name: str) -> str:
    try:
        return validate_localpart(username.lower(), server_name)
    except ValueError as e:
        raise InvalidUsernameError(str(e))


@registration_router.get("/register/available", response_model=AvailableResponse)
async def get_available(
    username: Annotated[str, Query(description="The username to check the availability of.")],
    store: Annotated[AbstractStore, Depends(get_store)]
):
    """
    Checks whether a username is available, and valid, for this server.

    Using this endpoint does not reserve the username; it can be taken
    between this check and the registration request.
    """
    localpart = _checked_localpart(username, store.server_name)
    try:
        exists = await store.check_username_exists(localpart)
    except StoreError as e:
        raise store_error_to_http(e, "check_username_exists")
    if exists:
        raise UserInUseError()
    return AvailableResponse(available=True)


@registration_router.post("/register", response_model=RegisterResponse, response_model_exclude_none=True)
async def post_register(
    request_data: RegisterRequest,
    store: Annotated[AbstractStore, Depends(get_store)],
    token_manager: Annotated[AccessTokenManager, Depends(get_token_manager)],
    password_hasher: Annotated[AbstractPasswordHasher, Depends(get_password_hasher)],
    kind: Annotated[RegistrationKind, Query()] = RegistrationKind.USER
):
    """
    Register an account and, unless ``inhibit_login`` is set, log its first
    device in. A device id is generated when the client supplies none.
    """
    if kind is RegistrationKind.GUEST:
        raise GuestAccessForbiddenError()
    if not request_data.username:
        raise MissingParamError("Missing 'username'.")
    if not request_data.password:
        raise MissingParamError("Missing 'password'.")

    localpart = _checked_localpart(request_data.username, store.server_name)
    logger.info(f"Registration requested for localpart '{localpart}'.")

    password_hash = await run_in_threadpool(password_hasher.hash_password, request_data.password)
    try:
        if await store.check_username_exists(localpart):
            raise UserInUseError()
        account = await store.create_account(localpart, password_hash)
    except InvalidSyntaxError:
        # Lost a race with a concurrent registration of the same localpart
        raise UserInUseError()
    except StoreError as e:
        raise store_error_to_http(e, "create_account")

    if request_data.inhibit_login:
        return RegisterResponse(user_id=str(account.user_id))

    device_id = request_data.device_id or generate_device_id()
    try:
        await store.set_device(account.user_id, device_id, request_data.initial_device_display_name)
    except StoreError as e:
        raise store_error_to_http(e, "set_device")

    access_token = token_manager.issue(Principal(user_id=account.user_id, device_id=device_id))
    logger.info(f"Registered {account.user_id} with device '{device_id}'.")
    return RegisterResponse(
        user_id=str(account.user_id),
        access_token=access_token,
        device_id=device_id
    )
