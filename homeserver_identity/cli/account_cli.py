# homeserver_identity/cli/account_cli.py
import typer
from typing import Optional
from typing_extensions import Annotated

from .utils_cli import run_with_store
from ..identity.credentials import Pbkdf2PasswordHasher, generate_otp
from ..identity.models import UserId, validate_localpart
from ..settings import settings

app = typer.Typer(
    name="account",
    help="Manage accounts and their devices.",
    no_args_is_help=True
)


def _user_id(localpart: str) -> UserId:
    try:
        validate_localpart(localpart, settings.server_name)
        return UserId(localpart=localpart, server_name=settings.server_name)
    except ValueError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@app.command("create")
def create_account(
    localpart: Annotated[str, typer.Argument(help="Localpart of the new account.")],
    password: Annotated[
        str,
        typer.Option(prompt=True, hide_input=True, confirmation_prompt=True, help="Account password.")
    ],
    display_name: Annotated[
        Optional[str],
        typer.Option("--display-name", help="Display name; defaults to the localpart.")
    ] = None
):
    """Create a new account."""
    user_id = _user_id(localpart)
    password_hash = Pbkdf2PasswordHasher().hash_password(password)

    async def _create(store):
        if await store.check_username_exists(user_id.localpart):
            return None
        return await store.create_account(user_id.localpart, password_hash, display_name)

    account = run_with_store(_create)
    if account is None:
        typer.secho(f"Error: {user_id} already exists.", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.secho(f"Created {account.user_id} ({account.display_name}).", fg=typer.colors.GREEN)


@app.command("exists")
def account_exists(
    localpart: Annotated[str, typer.Argument(help="Localpart to look up.")]
):
    """Check whether an account exists. Exits with code 1 when it does not."""
    user_id = _user_id(localpart)

    async def _check(store):
        return await store.check_username_exists(user_id.localpart)

    if run_with_store(_check):
        typer.echo(f"{user_id} exists.")
    else:
        typer.echo(f"{user_id} does not exist.")
        raise typer.Exit(code=1)


@app.command("devices")
def list_devices(
    localpart: Annotated[str, typer.Argument(help="Account whose devices to list.")]
):
    """List the devices registered to an account."""
    user_id = _user_id(localpart)

    async def _list(store):
        return await store.list_devices(user_id)

    devices = run_with_store(_list)
    if not devices:
        typer.echo(f"No devices registered for {user_id}.")
        return
    for device in devices:
        typer.echo(f"{device.device_id}\t{device.display_name or '-'}\t{device.created_at.isoformat()}")


@app.command("revoke-devices")
def revoke_devices(
    localpart: Annotated[str, typer.Argument(help="Account whose devices to remove.")],
    device_id: Annotated[
        Optional[str],
        typer.Option("--device-id", help="Remove only this device.")
    ] = None
):
    """Remove one device, or every device, of an account. Their access tokens stop working."""
    user_id = _user_id(localpart)

    async def _revoke(store):
        if device_id:
            await store.remove_device_id(user_id, device_id)
        else:
            await store.remove_all_device_ids(user_id)

    run_with_store(_revoke)
    target = f"device '{device_id}'" if device_id else "all devices"
    typer.secho(f"Removed {target} of {user_id}.", fg=typer.colors.GREEN)


@app.command("otp")
def issue_otp(
    localpart: Annotated[str, typer.Argument(help="Account to issue the one-time password for.")],
    ttl: Annotated[
        Optional[int],
        typer.Option("--ttl", min=1, help="Lifetime in seconds; defaults to OTP_LIFETIME_SECONDS.")
    ] = None
):
    """Issue a one-time password. It is printed once and stored only as a hash."""
    user_id = _user_id(localpart)
    otp = generate_otp()
    ttl_seconds = ttl or settings.otp_lifetime_seconds

    async def _issue(store):
        await store.add_otp(user_id, otp, ttl_seconds)

    run_with_store(_issue)
    typer.echo(otp)
