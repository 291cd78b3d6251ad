# homeserver_identity/api/auth.py
import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from .models import LoginFlow, LoginFlowsResponse, LoginRequest, LoginResponse
from ..auth.dependencies import get_current_principal
from ..auth.errors import ForbiddenError, MissingParamError, store_error_to_http
from ..auth.tokens import AccessTokenManager
from ..dependencies import get_password_hasher, get_store, get_token_manager
from ..identity.credentials import AbstractPasswordHasher
from ..identity.models import Principal, UserIdentifierUser, generate_device_id
from ..storage.errors import RecordNotFoundError, StoreError
from ..storage.storage_interfaces import AbstractStore

logger = logging.getLogger(__name__)
auth_router = APIRouter(tags=["Session Management"])

INVALID_CREDENTIALS = "Invalid username or password."


@auth_router.get("/login", response_model=LoginFlowsResponse)
async def login_info():
    """Lists the login types this server supports."""
    return LoginFlowsResponse(flows=[LoginFlow(type="m.login.password")])


@auth_router.post("/login", response_model=LoginResponse)
async def login(
    request_data: LoginRequest,
    store: Annotated[AbstractStore, Depends(get_store)],
    token_manager: Annotated[AccessTokenManager, Depends(get_token_manager)],
    password_hasher: Annotated[AbstractPasswordHasher, Depends(get_password_hasher)]
):
    """
    Password login. Registers (or renames) the device and returns an access
    token bound to it. Unknown users and wrong passwords get the same answer.
    """
    identifier = request_data.identifier
    if identifier is None:
        if not request_data.user:
            raise MissingParamError("Missing 'identifier'.")
        identifier = UserIdentifierUser(user=request_data.user)

    try:
        user_id = await store.fetch_user_id(identifier)
        if user_id is None:
            logger.info("Login rejected: identifier did not resolve to an account.")
            raise ForbiddenError(INVALID_CREDENTIALS)
        password_hash = await store.fetch_password_hash(user_id)
    except RecordNotFoundError:
        raise ForbiddenError(INVALID_CREDENTIALS)
    except StoreError as e:
        raise store_error_to_http(e, "login")

    password_ok = await run_in_threadpool(
        password_hasher.verify_password, request_data.password, password_hash
    )
    if not password_ok:
        logger.info(f"Login rejected for {user_id}: wrong password.")
        raise ForbiddenError(INVALID_CREDENTIALS)

    device_id = request_data.device_id or generate_device_id()
    try:
        await store.set_device(user_id, device_id, request_data.initial_device_display_name)
    except StoreError as e:
        raise store_error_to_http(e, "set_device")

    logger.info(f"Login succeeded for {user_id} on device '{device_id}'.")
    return LoginResponse(
        user_id=str(user_id),
        access_token=token_manager.issue(Principal(user_id=user_id, device_id=device_id)),
        device_id=device_id
    )


@auth_router.post("/logout")
async def logout(
    principal: Annotated[Principal, Depends(get_current_principal)],
    store: Annotated[AbstractStore, Depends(get_store)]
):
    """Invalidates the access token used for this request by removing its device."""
    if principal.device_id is not None:
        try:
            await store.remove_device_id(principal.user_id, principal.device_id)
        except StoreError as e:
            raise store_error_to_http(e, "remove_device_id")
    logger.info(f"Logged out device '{principal.device_id}' of {principal.user_id}.")
    return {}


@auth_router.post("/logout/all")
async def logout_all(
    principal: Annotated[Principal, Depends(get_current_principal)],
    store: Annotated[AbstractStore, Depends(get_store)]
):
    """Invalidates every access token of the user by removing all of their devices."""
    try:
        await store.remove_all_device_ids(principal.user_id)
    except StoreError as e:
        raise store_error_to_http(e, "remove_all_device_ids")
    logger.info(f"Logged out all devices of {principal.user_id}.")
    return {}
