# homeserver_identity/cli/main_cli.py
import typer
from . import account_cli
from . import db_cli

app = typer.Typer(
    name="homeserver-identity",
    help="Homeserver identity store command line interface.",
    no_args_is_help=True
)

app.add_typer(db_cli.app, name="db")
app.add_typer(account_cli.app, name="account")


@app.callback()
def main_callback():
    """
    Homeserver identity store CLI.
    Commands act directly on the storage backend configured in the environment.
    """
    pass


def cli_entry_point():
    """Entry point function for console script registration in pyproject.toml"""
    app()


if __name__ == "__main__":
    cli_entry_point()
