# homeserver_identity/main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api import client_api_router
from .auth.errors import MatrixError
from .auth.tokens import AccessTokenManager
from .identity.credentials import AbstractPasswordHasher, Pbkdf2PasswordHasher
from .settings import settings
from .storage.factory import create_store
from .storage.storage_interfaces import AbstractStore

if not logging.getLogger().hasHandlers():
    logging.basicConfig(
        level="DEBUG" if settings.debug_mode else settings.log_level.upper(),
        format='%(asctime)s - %(name)s [%(levelname)s] - %(message)s'
    )

logger = logging.getLogger(__name__)


@asynccontextmanager
async def identity_app_lifespan(app_instance: FastAPI):
    """
    Creates and initializes the configured store unless one was injected,
    and tears it down on shutdown. An injected store belongs to the caller.
    """
    owns_store = app_instance.state.store is None
    if owns_store:
        store = create_store(settings)
        await store.initialize()
        app_instance.state.store = store
    logger.info(f"Application startup complete using {app_instance.state.store.get_type()}.")

    try:
        yield
    finally:
        logger.info("Application shutdown initiated.")
        if owns_store:
            try:
                await app_instance.state.store.teardown()
            except Exception as e:
                logger.error(f"Teardown error: {e}", exc_info=True)
            app_instance.state.store = None


async def matrix_error_handler(request: Request, exc: MatrixError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)


def create_app(
    store: Optional[AbstractStore] = None,
    token_manager: Optional[AccessTokenManager] = None,
    password_hasher: Optional[AbstractPasswordHasher] = None
) -> FastAPI:
    """
    Build the application.

    Collaborators are passed in explicitly; anything left out is built from
    settings. The store is shared by all requests through ``app.state``.
    """
    app = FastAPI(title=settings.app_name, lifespan=identity_app_lifespan)
    app.state.store = store
    app.state.token_manager = token_manager or AccessTokenManager(
        settings.access_token_key, settings.access_token_lifetime_seconds
    )
    app.state.password_hasher = password_hasher or Pbkdf2PasswordHasher()
    app.add_exception_handler(MatrixError, matrix_error_handler)
    app.include_router(client_api_router)
    return app


app = create_app()
