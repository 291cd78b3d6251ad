# homeserver_identity/cli/db_cli.py
import typer

from .utils_cli import run_with_store
from ..settings import settings

app = typer.Typer(
    name="db",
    help="Storage backend maintenance.",
    no_args_is_help=True
)


@app.command("init")
def init_db():
    """Create the schema of the configured storage backend."""
    async def _noop(store):
        return store.get_type()

    store_type = run_with_store(_noop)
    typer.secho(
        f"Initialized {store_type} (backend '{settings.storage_backend}').",
        fg=typer.colors.GREEN
    )
