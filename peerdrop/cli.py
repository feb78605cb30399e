#!/usr/bin/env python3
"""
PeerDrop CLI

Command-line interface for sending a file to a peer over a direct channel.

Usage:
    peerdrop receive --port 8470 --out ./downloads    # Wait for files
    peerdrop send FILE --host 192.168.1.20            # Send a file
    peerdrop config                                   # Show example config
"""

import asyncio
import logging
from contextlib import suppress
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler

from .channel import ChannelServer, StreamChannel, connect_to_peer
from .config import EXAMPLE_CONFIG, Config, load_config
from .storage import FileSink
from .transfer import (
    ErrorKind, ReceivedFile, TransferError, TransferSession, TransferStatus,
    format_file_size,
)

console = Console()


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


def _progress_bar() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        console=console,
    )


def _new_session(config: Config, channel: StreamChannel) -> TransferSession:
    return TransferSession(
        channel,
        chunk_size=config.chunk_size,
        validate_geometry=config.validate_geometry,
    )


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='JSON config file')
@click.pass_context
def cli(ctx, verbose, config_path):
    """PeerDrop - send a file straight to a peer."""
    config = load_config(Path(config_path) if config_path else None)
    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--host', '-H', required=True, help='Receiving peer host')
@click.option('--port', '-p', type=int, default=None, help='Receiving peer port')
@click.pass_context
def send(ctx, file_path, host, port):
    """Send a file to a listening peer."""
    config: Config = ctx.obj['config']
    port = port or config.port

    async def run() -> bool:
        channel = await connect_to_peer(
            host, port,
            timeout=config.connect_timeout,
            max_message_size=config.max_message_size,
        )
        if channel is None:
            console.print(f"[red]✗ Could not connect to {host}:{port}[/red]")
            return False

        console.print(f"[green]Connected to peer: {channel.peer}[/green]")
        session = _new_session(config, channel)
        path = session.select_file(Path(file_path))
        console.print(f"File selected: [cyan]{path.name}[/cyan] "
                      f"({format_file_size(session.file_size)})")

        # Watch the channel so a closing peer is noticed mid-send
        listener = asyncio.create_task(session.listen())
        try:
            with _progress_bar() as progress:
                task = progress.add_task(f"Sending {path.name}...", total=100)
                session.on_progress(lambda p: progress.update(task, completed=p))

                # A refused start leaves the session Failed, reported below
                with suppress(TransferError):
                    await session.start_send()
                status = await session.wait()

                if status is TransferStatus.COMPLETE:
                    progress.update(task, completed=100, description="Done!")
        finally:
            await channel.close()
            listener.cancel()
            with suppress(asyncio.CancelledError):
                await listener

        if session.status is TransferStatus.COMPLETE:
            console.print(Panel.fit(
                f"[bold green]Transfer Complete[/bold green]\n\n"
                f"Name: [cyan]{session.file_name}[/cyan]\n"
                f"Size: [yellow]{format_file_size(session.file_size)}[/yellow]\n"
                f"Transfer ID: [green]{session.transfer_id}[/green]\n"
                f"Speed: [yellow]{format_file_size(int(session.speed_bytes_per_sec))}/s[/yellow]",
                title="Sent File"
            ))
            return True

        console.print(f"\n[red]✗ Transfer failed: {_failure_text(session)}[/red]")
        return False

    ok = asyncio.run(run())
    ctx.exit(0 if ok else 1)


@cli.command()
@click.option('--host', default=None, help='Interface to listen on')
@click.option('--port', '-p', type=int, default=None, help='Port to listen on')
@click.option('--out', '-o', type=click.Path(file_okay=False), help='Download directory')
@click.option('--once', is_flag=True, help='Exit after the first received file')
@click.pass_context
def receive(ctx, host, port, out, once):
    """Wait for a peer and save the files it sends."""
    config: Config = ctx.obj['config']
    sink = FileSink(Path(out) if out else config.download_dir)

    async def run():
        done = asyncio.Event()
        writes: List[asyncio.Task] = []

        async def handle(channel: StreamChannel):
            console.print(f"[green]Connected to peer: {channel.peer}[/green]")
            session = _new_session(config, channel)

            with _progress_bar() as progress:
                current: Optional[int] = None

                def on_status(status: TransferStatus):
                    nonlocal current
                    if status is TransferStatus.RECEIVING:
                        console.print(f"Receiving File: [cyan]{session.file_name}[/cyan] "
                                      f"({format_file_size(session.file_size)})")
                        current = progress.add_task(f"Receiving {session.file_name}...",
                                                    total=100)
                    elif status.is_terminal:
                        if current is not None:
                            progress.remove_task(current)
                            current = None
                        if status is TransferStatus.FAILED:
                            console.print(f"[red]✗ Transfer failed: "
                                          f"{_failure_text(session)}[/red]")
                        session.reset()

                def on_progress(percent: int):
                    if current is not None:
                        progress.update(current, completed=percent)

                def on_file(received: ReceivedFile):
                    writes.append(asyncio.create_task(_save(sink, received)))
                    if once:
                        done.set()

                def on_rejected(transfer_id: str, kind: ErrorKind):
                    console.print(f"[yellow]Rejected transfer {transfer_id}: "
                                  f"{kind.value}[/yellow]")

                session.on_status_change(on_status)
                session.on_progress(on_progress)
                session.on_file_received(on_file)
                session.on_rejected(on_rejected)

                await session.listen()

            console.print(f"[yellow]Peer disconnected: {channel.peer}[/yellow]")

        server = ChannelServer(
            handle,
            host=host or config.host,
            port=port or config.port,
            max_message_size=config.max_message_size,
        )
        await server.start()
        console.print(Panel.fit(
            f"[bold green]Ready to receive files[/bold green]\n\n"
            f"Address: [cyan]{server.address[0]}:{server.address[1]}[/cyan]\n"
            f"Saving to: [blue]{sink.download_dir}[/blue]",
            title="PeerDrop"
        ))

        try:
            await done.wait()
        finally:
            await server.stop()
            if writes:
                await asyncio.gather(*writes)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")

    _print_received(sink)


async def _save(sink: FileSink, received: ReceivedFile):
    try:
        record = await sink.write(received)
    except OSError as e:
        console.print(f"[red]✗ Could not save {received.name}: {e}[/red]")
        return
    console.print(f"[green]✓ Received {record.name} "
                  f"({format_file_size(record.size)}) -> {record.path}[/green]")


def _failure_text(session: TransferSession) -> str:
    if session.failure is None:
        return 'unknown error'
    return f"{session.failure.value} ({session.failure_message})"


def _print_received(sink: FileSink):
    if not sink.received:
        return
    table = Table(title="Received Files")
    table.add_column("Name", style="cyan")
    table.add_column("Size", justify="right", style="yellow")
    table.add_column("Path", style="blue")
    for record in sink.received:
        table.add_row(record.name, format_file_size(record.size), str(record.path))
    console.print(table)


@cli.command('config')
def show_config():
    """Print an example configuration file."""
    console.print("Example configuration file (config.json):")
    console.print(EXAMPLE_CONFIG)


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
