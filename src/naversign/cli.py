"""naversign CLI - Generate and verify Naver Commerce API signatures."""

import asyncio
import json
import sys
from collections.abc import Callable, Coroutine
from typing import Any, ParamSpec, TypeVar

import aiohttp
import click
from rich.console import Console
from rich.table import Table

from naversign.common.logging import setup_logging
from naversign.common.settings import Settings
from naversign.signing.engine import (
    DEFAULT_COST,
    SignatureMode,
    SignatureRequest,
    SigningOptions,
    VerificationRequest,
    current_timestamp_ms,
    generate,
    verify,
)
from naversign.signing.errors import SignatureError

console = Console()

P = ParamSpec("P")
R = TypeVar("R")

MODE_CHOICE = click.Choice([m.value for m in SignatureMode])


def async_command(f: Callable[P, Coroutine[Any, Any, R]]) -> Callable[P, R]:
    """Decorator to run async commands."""

    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        return asyncio.run(f(*args, **kwargs))

    return wrapper


def _fail(error: SignatureError) -> None:
    console.print(f"[red]Error: {error.message}[/red]")
    for key, value in error.details.items():
        console.print(f"  {key}: {value}")
    sys.exit(1)


@click.group()
@click.option("--log-level", default="WARNING", show_default=True, help="Log level for diagnostics on stderr")
@click.pass_context
def cli(ctx: click.Context, log_level: str) -> None:
    """naversign - bcrypt signatures for the Naver Commerce API."""
    # serve configures logging from its own settings
    if ctx.invoked_subcommand != "serve":
        setup_logging(log_level, json_output=False, stream=sys.stderr)


# === Signing ===


@cli.command("generate")
@click.option("--client-id", required=True, help="Application client id")
@click.option("--client-secret", required=True, help="Application client secret")
@click.option("--timestamp", help="Epoch milliseconds (default: now)")
@click.option("--mode", type=MODE_CHOICE, default=SignatureMode.BASE64_WRAPPED.value, show_default=True)
@click.option("--cost", type=click.IntRange(4, 31), default=DEFAULT_COST, show_default=True,
              help="bcrypt cost for generated_salt mode")
@click.option("--lenient", is_flag=True, help="Accept non-numeric timestamps")
@click.option("--json", "as_json", is_flag=True, help="Print the full result as JSON")
def generate_cmd(
    client_id: str,
    client_secret: str,
    timestamp: str | None,
    mode: str,
    cost: int,
    lenient: bool,
    as_json: bool,
) -> None:
    """Generate a signature locally."""
    options = SigningOptions(mode=SignatureMode(mode), cost=cost, strict_timestamp=not lenient)
    request = SignatureRequest(
        client_id=client_id,
        timestamp=timestamp or str(current_timestamp_ms()),
        client_secret=client_secret,
    )

    try:
        result = generate(request, options)
    except SignatureError as e:
        _fail(e)
        return

    if as_json:
        click.echo(json.dumps({
            "signature": result.signature,
            "client_id": result.client_id,
            "timestamp": result.timestamp,
            "password_used": result.password,
            "method": result.mode.method_tag,
        }, indent=2))
        return

    table = Table(title="Naver Signature")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("client_id", result.client_id)
    table.add_row("timestamp", result.timestamp)
    table.add_row("password", result.password)
    table.add_row("mode", result.mode.value)
    table.add_row("signature", result.signature)
    console.print(table)


@cli.command("verify")
@click.option("--client-id", required=True, help="Application client id")
@click.option("--client-secret", required=True, help="Application client secret")
@click.option("--timestamp", required=True, help="Timestamp the signature was made with")
@click.option("--signature", "-s", required=True, help="Signature to check")
@click.option("--mode", type=MODE_CHOICE, default=SignatureMode.BASE64_WRAPPED.value, show_default=True)
def verify_cmd(
    client_id: str,
    client_secret: str,
    timestamp: str,
    signature: str,
    mode: str,
) -> None:
    """Verify a signature locally."""
    request = VerificationRequest(
        client_id=client_id,
        timestamp=timestamp,
        client_secret=client_secret,
        signature=signature,
    )

    try:
        result = verify(request, SigningOptions(mode=SignatureMode(mode)))
    except SignatureError as e:
        _fail(e)
        return

    if result.valid:
        console.print("[green]✓ Signature is valid[/green]")
    else:
        console.print(f"[red]✗ Signature is invalid for password {result.password}[/red]")
        sys.exit(1)


@cli.command("timestamp")
def timestamp_cmd() -> None:
    """Print the current epoch-millisecond timestamp."""
    click.echo(current_timestamp_ms())


# === Server ===


@cli.command("serve")
@click.option("--host", default=None, help="Bind host (default from settings)")
@click.option("--port", type=int, default=None, help="Bind port (default from settings)")
@click.option("--mode", type=MODE_CHOICE, default=None, help="Signature mode (default from settings)")
def serve_cmd(host: str | None, port: int | None, mode: str | None) -> None:
    """Run the signature HTTP server."""
    import uvicorn
    from naversign.server.main import create_app

    overrides: dict[str, Any] = {}
    if host:
        overrides["host"] = host
    if port:
        overrides["port"] = port
    if mode:
        overrides["signature_mode"] = SignatureMode(mode)
    settings = Settings(**overrides)

    setup_logging(settings.log_level, json_output=settings.log_json)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


@cli.command("request")
@click.option("--url", default="http://localhost:3000", show_default=True, help="Server base URL")
@click.option("--client-id", required=True, help="Application client id")
@click.option("--client-secret", required=True, help="Application client secret")
@click.option("--timestamp", help="Epoch milliseconds (default: now)")
@click.option("--mode", type=MODE_CHOICE, default=None, help="Request a specific signature mode")
@async_command
async def request_cmd(
    url: str,
    client_id: str,
    client_secret: str,
    timestamp: str | None,
    mode: str | None,
) -> None:
    """Request a signature from a running server."""
    payload: dict[str, Any] = {
        "client_id": client_id,
        "timestamp": timestamp or str(current_timestamp_ms()),
        "client_secret": client_secret,
    }
    if mode:
        payload["mode"] = mode

    async with aiohttp.ClientSession() as session:
        try:
            async with session.post(f"{url.rstrip('/')}/naver-signature", json=payload) as response:
                text = await response.text()
                if response.status != 200:
                    console.print(f"[red]Error ({response.status}): {text}[/red]")
                    sys.exit(1)
        except aiohttp.ClientError as exc:
            console.print(f"[red]Error: {exc}[/red]")
            sys.exit(1)

    click.echo(text)


def main() -> None:
    """CLI entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
