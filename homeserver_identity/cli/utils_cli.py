# homeserver_identity/cli/utils_cli.py
import asyncio
from typing import Awaitable, Callable, TypeVar

import typer

from ..settings import settings
from ..storage.errors import StoreError
from ..storage.factory import create_store
from ..storage.storage_interfaces import AbstractStore

T = TypeVar("T")


def run_with_store(action: Callable[[AbstractStore], Awaitable[T]]) -> T:
    """
    Run ``action`` against a freshly initialized store built from settings.

    Store failures are reported in red and end the command with exit code 1.
    """
    async def _runner() -> T:
        store = create_store(settings)
        await store.initialize()
        try:
            return await action(store)
        finally:
            await store.teardown()

    try:
        return asyncio.run(_runner())
    except StoreError as e:
        typer.secho(f"CLI: Store error ({e.code.value}): {e.message}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
