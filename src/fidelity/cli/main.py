"""Fidelity CLI: inspect and poke a running bridge."""

from __future__ import annotations

import json

import httpx
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

app = typer.Typer(
    name="fidelity",
    help="Fidelity shop and Discord approval bridge",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()

DEFAULT_URL = "http://localhost:8000"


def _get_client(base_url: str, api_key: str | None = None, relay_secret: str | None = None) -> httpx.Client:
    headers = {}
    if api_key:
        headers["X-API-Key"] = api_key
    if relay_secret:
        headers["X-Fidelity-Relay-Secret"] = relay_secret
    return httpx.Client(base_url=base_url, headers=headers, timeout=30.0)


def _detail(resp: httpx.Response) -> str:
    try:
        return str(resp.json().get("detail", resp.text))
    except ValueError:
        return resp.text


@app.command()
def status(
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="FIDELITY_URL"),
) -> None:
    """Show server health and the Discord session state."""
    client = _get_client(base_url)

    try:
        resp = client.get("/health")
    except httpx.ConnectError:
        console.print(f"[red]✗[/red] Fidelity is not running at {base_url}")
        raise typer.Exit(1)

    data = resp.json()
    discord_info = data.get("discord", {})

    table = Table(title="Fidelity Status", show_header=False, border_style="blue")
    table.add_column("Key", style="bold")
    table.add_column("Value")

    color = "green" if data.get("status") == "healthy" else "red"
    table.add_row("Status", f"[{color}]{data.get('status', '?')}[/{color}]")
    table.add_row("Version", data.get("version", "?"))
    table.add_row("Uptime", f"{data.get('uptime_seconds', '?')}s")
    table.add_row("Database", data.get("database", "?"))
    table.add_row("Discord", discord_info.get("state", "?"))
    table.add_row("Configured", str(discord_info.get("configured", False)))
    table.add_row("Attempts", f"{discord_info.get('attempt', 0)}/{discord_info.get('max_attempts', '?')}")
    if discord_info.get("last_error"):
        table.add_row("Last error", f"[red]{discord_info['last_error']}[/red]")

    console.print()
    console.print(table)
    console.print()


@app.command()
def connect(
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="FIDELITY_URL"),
) -> None:
    """Ask the server to (re)connect its Discord session."""
    client = _get_client(base_url)
    try:
        resp = client.get("/api/discord/status")
    except httpx.ConnectError:
        console.print(f"[red]✗[/red] Fidelity is not running at {base_url}")
        raise typer.Exit(1)

    data = resp.json()
    if data.get("connected"):
        console.print("[green]✓[/green] Discord is connected")
    elif data.get("config_error"):
        console.print(f"[red]✗[/red] {data.get('message')}")
        raise typer.Exit(1)
    else:
        console.print(f"[yellow]…[/yellow] {data.get('message')} (state: {data.get('state')})")


@app.command()
def interact(
    custom_id: str = typer.Argument(..., help="Button custom id, e.g. approve_receipt:abc123:10"),
    message_id: str = typer.Argument(..., help="Discord message id the button belongs to"),
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="FIDELITY_URL"),
    relay_secret: str = typer.Option("", "--secret", "-s", envvar="FIDELITY_DISCORD_RELAY_SECRET"),
    raw: bool = typer.Option(False, "--raw", help="Output raw JSON response"),
) -> None:
    """Relay a button click to the bridge, as the interaction relay would."""
    client = _get_client(base_url, relay_secret=relay_secret or None)
    try:
        resp = client.post(
            "/api/discord/interactions",
            json={"customActionString": custom_id, "remoteMessageId": message_id},
        )
    except httpx.ConnectError:
        console.print(f"[red]✗[/red] Fidelity is not running at {base_url}")
        raise typer.Exit(1)

    if resp.status_code >= 400:
        console.print(f"[red]✗[/red] {resp.status_code}: {_detail(resp)}")
        raise typer.Exit(1)

    data = resp.json()
    if raw:
        console.print_json(json.dumps(data))
        return
    console.print(Panel(data.get("message", "ok"), title="interaction", border_style="green"))


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: bool = typer.Option(False, "--reload"),
) -> None:
    """Start the Fidelity server (for development)."""
    import uvicorn

    console.print(Panel("Starting Fidelity server...", border_style="blue"))
    uvicorn.run(
        "fidelity.main:app",
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def version() -> None:
    """Show Fidelity version."""
    from fidelity import __version__

    console.print(f"Fidelity v{__version__}")


def main() -> None:
    """Entrypoint."""
    app()


if __name__ == "__main__":
    main()
