"""CLI entry point for termbridge."""

from __future__ import annotations

import asyncio
import logging

import typer

from termbridge.bridge import BridgeOrchestrator, build_transport
from termbridge.config import BridgeConfig
from termbridge.errors import ProcessStartError, TransportInitError
from termbridge.session.wire import EventType, WireEvent
from termbridge.transport import init_tips

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="termbridge",
    help="Bridge an interactive terminal agent to a messaging transport.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    """Log to ``log_file`` if given, else only warnings to stderr.

    The wrapped program owns the terminal, so chatty logging on stderr
    would be drawn straight over its UI.
    """
    if verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO if log_file else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        filename=log_file,
    )


def exit_status(code: int | None, sig: int | None) -> int:
    """Shell-style exit status for a child's exit code or terminating signal."""
    if sig is not None:
        return 128 + sig
    return code or 0


@app.command(
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def run(
    command: str | None = typer.Argument(
        None, help="Program to wrap (default: from env/config, 'claude')."
    ),
    args: list[str] | None = typer.Argument(
        None, help="Arguments passed to the program."
    ),
    transport: str | None = typer.Option(
        None,
        "--transport",
        "-t",
        help="'file', 'package.module:Class' or path/to/plugin.py.",
    ),
    name: str | None = typer.Option(
        None, "--name", "-n", help="Instance name (default: current directory name)."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
    input_path: str | None = typer.Option(
        None, "--input", help="File transport input file."
    ),
    output_path: str | None = typer.Option(
        None, "--output", help="File transport output file."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    log_file: str | None = typer.Option(
        None, "--log-file", help="Write logs to this file."
    ),
) -> None:
    """Run a program in a PTY and bridge its conversation to a transport."""
    config = BridgeConfig.load(config_file)
    apply_overrides(
        config,
        command=command,
        args=args,
        transport=transport,
        name=name,
        input_path=input_path,
        output_path=output_path,
        verbose=verbose,
        log_file=log_file,
    )
    setup_logging(config.verbose, config.log_file)

    bridge_transport = None
    try:
        bridge_transport = build_transport(config)
    except TransportInitError as e:
        typer.echo(f"Warning: {e} (continuing without a transport)", err=True)
    orchestrator = BridgeOrchestrator(config, transport=bridge_transport)

    typer.echo(f"termbridge: {config.command} [{config.instance}] via {config.transport}")
    for tip in orchestrator.init_tips():
        typer.echo(f"  {tip}")

    try:
        status = asyncio.run(_run_session(orchestrator))
    except ProcessStartError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(127)
    raise typer.Exit(status)


def apply_overrides(
    config: BridgeConfig,
    command: str | None = None,
    args: list[str] | None = None,
    transport: str | None = None,
    name: str | None = None,
    input_path: str | None = None,
    output_path: str | None = None,
    verbose: bool = False,
    log_file: str | None = None,
) -> BridgeConfig:
    """Apply command-line values on top of the loaded config."""
    if command:
        config.command = command
        config.args = list(args or [])
    if transport:
        config.transport = transport
    if name:
        config.instance = name
    if input_path:
        config.file.input_path = input_path
    if output_path:
        config.file.output_path = output_path
    if verbose:
        config.verbose = True
    if log_file:
        config.log_file = log_file
    return config


async def _run_session(orchestrator: BridgeOrchestrator) -> int:
    wire = orchestrator.wire
    consumer = asyncio.create_task(consume_wire(wire.subscribe()))
    try:
        await orchestrator.start()
        try:
            await orchestrator.wait()
        finally:
            await orchestrator.stop()
    finally:
        wire.close()
        await consumer
    session = orchestrator.session
    return exit_status(session.exit_code, session.exit_signal)


async def consume_wire(queue: asyncio.Queue[WireEvent | None]) -> None:
    """Log session events until the wire closes.

    The wrapped program owns the terminal, so events go to the log rather
    than to stdout.
    """
    while True:
        event = await queue.get()
        if event is None:
            break

        d = event.data
        if event.type == EventType.TURN:
            logger.debug("[turn] %s: %s", d.get("speaker", "?"), d.get("text", "")[:200])

        elif event.type == EventType.COMMAND:
            logger.info(
                "[command] %d chars for %s", len(d.get("text", "")), d.get("context_id", "?")
            )

        elif event.type == EventType.STATUS:
            logger.info("[status] %s", d.get("message", ""))

        elif event.type == EventType.ERROR:
            logger.warning("[error] %s", d.get("error", "Unknown error"))

        elif event.type == EventType.PTY_EXIT:
            logger.info(
                "[pty-exit] %s (code=%s signal=%s)",
                d.get("instance", "?"),
                d.get("exit_code"),
                d.get("signal"),
            )


@app.command()
def tips(
    transport: str | None = typer.Option(
        None, "--transport", "-t", help="Transport to describe."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Show how to talk to the configured transport."""
    config = BridgeConfig.load(config_file)
    if transport:
        config.transport = transport
    try:
        instance = build_transport(config)
    except TransportInitError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    lines = init_tips(instance)
    if not lines:
        typer.echo(f"No tips for transport {config.transport!r}")
    for line in lines:
        typer.echo(line)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
