"""Command-line demo and diagnostics for natsbind."""

from __future__ import annotations

import logging
import threading

import typer
from rich.console import Console

from natsbind import __version__, runtime
from natsbind.config import DEFAULT_SERVER_URL
from natsbind.connection import Connection
from natsbind.errors import NatsError
from natsbind.message import Message
from natsbind.subscription import Subscription

app = typer.Typer(
    name="natsbind",
    help="Demo and diagnostics for the libnats Python binding.",
    add_completion=False,
)

console = Console()


def _on_message(done: threading.Event, connection: Connection, subscription: Subscription, message: Message) -> None:
    console.print(
        f'Subject "{message.subject}" received message: "{_show(message.data)}"'
    )
    reply = message.reply
    if reply is not None:
        connection.publish_string(reply, "salutations")
    done.set()


def _show(data: bytes | None) -> str:
    if data is None:
        return "[null]"
    return data.decode("utf-8", errors="replace")


def run_request_reply(url: str, subject: str, timeout_ms: int) -> str:
    """Subscribe on ``subject``, request until the handler has answered. Returns the reply text."""
    done = threading.Event()
    with runtime.initialized():
        with Connection.connect_to(url) as connection:
            with connection.subscribe(subject, _on_message, done):
                connection.flush()
                text = ""
                while not done.is_set():
                    with connection.request_string(subject, "greetings", timeout_ms) as reply:
                        text = _show(reply.data)
                        console.print(f'Reply "{reply.subject}" got message: {text}')
                return text


@app.callback()
def main_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """natsbind - Python binding for the NATS C client library."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("request-reply")
def request_reply(
    url: str = typer.Option(DEFAULT_SERVER_URL, "--url", "-u", help="NATS server URL."),
    subject: str = typer.Option("channel", "--subject", "-s", help="Subject to use."),
    timeout: int = typer.Option(1000, "--timeout", "-t", help="Request timeout in ms."),
) -> None:
    """Answer our own request: subscribe, request, print the reply."""
    try:
        run_request_reply(url, subject, timeout)
    except NatsError as e:
        console.print(f"[red]Error:[/red] {e} ({e.status.name})")
        raise typer.Exit(code=1) from e


@app.command()
def version() -> None:
    """Show binding and libnats versions."""
    console.print(f"[cyan]natsbind[/cyan] version: [bold]{__version__}[/bold]")
    try:
        native = runtime.get_version()
    except OSError as e:
        console.print(f"[red]libnats not loadable:[/red] {e}")
        raise typer.Exit(code=1) from e
    compatible = "compatible" if runtime.check_compatibility() else "[red]too old[/red]"
    console.print(f"[cyan]libnats[/cyan] version: [bold]{native}[/bold] ({compatible})")


@app.command()
def stats(
    url: str = typer.Option(DEFAULT_SERVER_URL, "--url", "-u", help="NATS server URL."),
) -> None:
    """Connect, flush, and print the connection counters."""
    try:
        with runtime.initialized():
            with Connection.connect_to(url) as connection:
                connection.flush()
                counts = connection.get_stats()
    except NatsError as e:
        console.print(f"[red]Error:[/red] {e} ({e.status.name})")
        raise typer.Exit(code=1) from e
    console.print(f"Messages in:  {counts.messages_in}")
    console.print(f"Bytes in:     {counts.bytes_in}")
    console.print(f"Messages out: {counts.messages_out}")
    console.print(f"Bytes out:    {counts.bytes_out}")
    console.print(f"Reconnects:   {counts.reconnects}")


def main() -> None:
    app()
