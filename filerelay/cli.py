#!/usr/bin/env python3
"""
filerelay CLI

Command-line interface for the raw TCP file relay.

Usage:
    filerelay send HOSTNAME FILEPATH     # Stream a file to a server
    filerelay serve [BUFSIZE]            # Run the server
    filerelay show-config                # Show effective configuration

    filerelay-client HOSTNAME FILEPATH   # Same as "filerelay send"
    filerelay-server [BUFSIZE]           # Same as "filerelay serve"

Exit codes (client):
    0  the whole file was sent
    1  bad arguments, lookup failure, or the file could not be opened
    2  no candidate address accepted a connection

Received bytes go to stdout; logs and status go to stderr.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.logging import RichHandler

from .config import Config, load_config, parse_bufsize, MIN_BUFSIZE, MAX_BUFSIZE, DEFAULT_BUFSIZE
from .errors import RelayError, EXIT_OK, EXIT_ERROR
from .transfer import Listener, send_file

# stdout carries received file bytes
console = Console(stderr=True)


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
        force=True,
    )


def run_send(config: Config, hostname: str, filepath: str,
             port: Optional[int] = None) -> int:
    """Send one file and map the outcome to an exit code."""
    port = port if port is not None else config.client_port

    try:
        report = asyncio.run(send_file(
            hostname, filepath,
            port=port,
            chunk_size=config.send_chunk_size,
        ))
    except RelayError as e:
        console.print(f"[red]client: {e}[/red]")
        return e.exit_code
    except KeyboardInterrupt:
        console.print("\n[yellow]client: interrupted[/yellow]")
        return EXIT_ERROR

    console.print(
        f"[green]✓ Sent {report.path.name} "
        f"({format_size(report.bytes_sent)}) to {report.peer}[/green]"
    )
    return EXIT_OK


async def _serve(listener: Listener):
    """Run the listener until SIGINT/SIGTERM, then shut down."""
    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()

    def _request_stop():
        if stop_requested.is_set():
            # Second signal: do not wait for stuck peers
            listener.reaper.cancel_all()
            return
        console.print("\n[yellow]Shutting down...[/yellow]")
        stop_requested.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop)
        except NotImplementedError:
            pass

    await listener.start()

    console.print(Panel.fit(
        f"[bold green]Server Started[/bold green]\n\n"
        f"Listening: [cyan]{listener.get_stats()['address']}[/cyan]\n"
        f"Buffer: [yellow]{listener.bufsize}[/yellow] "
        f"[dim](min {MIN_BUFSIZE}, max {MAX_BUFSIZE}, default {DEFAULT_BUFSIZE})[/dim]\n"
        f"Semaphore: [blue]{listener.semaphore.name}[/blue]",
        title="filerelay"
    ))
    console.print("[dim]Press Ctrl+C to stop[/dim]\n")

    serving = asyncio.create_task(listener.serve_forever())
    stopping = asyncio.create_task(stop_requested.wait())

    done, _ = await asyncio.wait({serving, stopping}, return_when=asyncio.FIRST_COMPLETED)
    stopping.cancel()

    await listener.stop()
    await asyncio.gather(serving, return_exceptions=True)

    if serving in done and not serving.cancelled() and serving.exception():
        raise serving.exception()


def run_serve(config: Config, bufsize: Optional[str] = None,
              port: Optional[int] = None, host: Optional[str] = None) -> int:
    """Run the server and map a startup failure to an exit code."""
    listener = Listener(
        port=port if port is not None else config.server_port,
        host=host if host is not None else config.host,
        bufsize=parse_bufsize(bufsize) if bufsize is not None else config.bufsize,
        backlog=config.backlog,
    )

    try:
        asyncio.run(_serve(listener))
    except RelayError as e:
        console.print(f"[red]server: {e}[/red]")
        return e.exit_code

    console.print("[green]Server stopped[/green]")
    return EXIT_OK


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False, path_type=Path),
              default=None, help='JSON config file')
@click.pass_context
def cli(ctx, verbose, config_path):
    """filerelay - stream files over raw TCP to a serializing server."""
    ctx.ensure_object(dict)
    config = load_config(config_path)
    setup_logging(verbose, config.log_level)
    ctx.obj['config'] = config


@cli.command()
@click.argument('hostname')
@click.argument('filepath')
@click.option('--port', type=int, default=None, help='Server TCP port')
@click.pass_context
def send(ctx, hostname, filepath, port):
    """Stream FILEPATH to the server at HOSTNAME."""
    ctx.exit(run_send(ctx.obj['config'], hostname, filepath, port))


@cli.command()
@click.argument('bufsize', required=False)
@click.option('--port', type=int, default=None, help='TCP port to listen on')
@click.option('--host', default=None, help='Local address to bind')
@click.pass_context
def serve(ctx, bufsize, port, host):
    """Accept transfers and print them one connection at a time."""
    ctx.exit(run_serve(ctx.obj['config'], bufsize, port, host))


@cli.command('show-config')
@click.pass_context
def show_config(ctx):
    """Show the effective configuration."""
    config = ctx.obj['config']

    table = Table(title="Effective Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="yellow")

    for key, value in config.to_dict().items():
        table.add_row(key, 'wildcard' if value is None else str(value))

    console.print(table)


@click.command('client')
@click.argument('hostname')
@click.argument('filepath')
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.pass_context
def client_command(ctx, hostname, filepath, verbose):
    """Stream FILEPATH to the server at HOSTNAME."""
    config = load_config()
    setup_logging(verbose, config.log_level)
    ctx.exit(run_send(config, hostname, filepath))


@click.command('server')
@click.argument('bufsize', required=False)
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.pass_context
def server_command(ctx, bufsize, verbose):
    """Accept transfers; BUFSIZE overrides the receive buffer (10-99999)."""
    config = load_config()
    setup_logging(verbose, config.log_level)
    ctx.exit(run_serve(config, bufsize))


def format_size(bytes_count: int) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


def _run_standalone(command: click.Command, argv=None) -> int:
    """Invoke a click command, reporting usage errors with exit code 1."""
    try:
        rv = command.main(args=argv, standalone_mode=False)
    except click.UsageError as e:
        e.show()
        return EXIT_ERROR
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except click.exceptions.Abort:
        return EXIT_ERROR
    return rv if isinstance(rv, int) else EXIT_OK


def main(argv=None) -> int:
    return _run_standalone(cli, argv)


def client_main(argv=None) -> int:
    return _run_standalone(client_command, argv)


def server_main(argv=None) -> int:
    return _run_standalone(server_command, argv)


if __name__ == '__main__':
    sys.exit(main())
