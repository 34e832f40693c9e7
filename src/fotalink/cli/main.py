"""fotalink command-line interface.

Example:
    $ fotalink ports
    $ fotalink at /dev/ttyUSB2 AT+CGMR
    $ fotalink run /dev/ttyUSB2 https://example.com/fw.bin fw.bin --hexdump
"""

import json
import sys
from dataclasses import replace
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from fotalink import __version__
from fotalink.cli.observer import ConsoleObserver
from fotalink.config import (
    LoggingConfig,
    ProfileError,
    SerialConfig,
    default_profile_path,
    load_profile,
)
from fotalink.logs import LoggerManager, get_logger
from fotalink.modem import (
    EventEmitter,
    FrameReader,
    ModemError,
    PatternTimeoutError,
    SerialTransport,
    list_serial_ports,
    run_session,
)

console = Console()
logger = get_logger("cli")


@click.group()
@click.version_option(version=__version__, prog_name="fotalink")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable debug logging",
)
@click.option(
    "--log-format",
    type=click.Choice(["text", "json"]),
    default=None,
    help="Log output format (default: FOTALINK_LOG_FORMAT or text)",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write logs to a file instead of stderr",
)
@click.option(
    "--log-level",
    "log_levels",
    multiple=True,
    metavar="COMPONENT=LEVEL",
    help="Per-component log level, e.g. modem.transfer=DEBUG (repeatable)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    log_format: Optional[str],
    log_file: Optional[str],
    log_levels: Tuple[str, ...],
) -> None:
    """Firmware download and update over a modem's AT port.

    Runs HTTP download, local firmware upload and update monitoring
    sessions against SIMCom-style cellular modules.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    config = LoggingConfig.from_env()
    if verbose:
        config.level = "DEBUG"
    if log_format:
        config.format = log_format
    if log_file:
        config.output_file = log_file
    for entry in log_levels:
        component, sep, level = entry.partition("=")
        if not sep or not component or not level:
            raise click.BadParameter(
                f"expected COMPONENT=LEVEL, got {entry!r}", param_hint="--log-level"
            )
        config.component_levels[component] = level

    try:
        config.validate()
    except ValueError as e:
        raise click.BadParameter(str(e))

    manager = LoggerManager(config)
    manager.configure()
    ctx.obj["log_manager"] = manager
    ctx.call_on_close(manager.shutdown)


@cli.command()
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output as JSON",
)
def ports(json_output: bool) -> None:
    """List serial ports."""
    found = list_serial_ports()

    if json_output:
        click.echo(json.dumps(found, indent=2))
        return

    if not found:
        console.print("[yellow]No serial ports found[/yellow]")
        return

    table = Table(title="Serial Ports")
    table.add_column("Device", style="cyan")
    table.add_column("Description", style="green")
    table.add_column("Manufacturer", style="green")
    table.add_column("VID:PID", style="white")

    for port in found:
        table.add_row(
            port["device"],
            port["description"] or "",
            port["manufacturer"] or "",
            port["vid_pid"] or "",
        )

    console.print(table)
    console.print(f"\n[bold]Total: {len(found)} port(s)[/bold]")


@cli.command()
@click.argument("port")
@click.argument("url")
@click.argument("file", type=click.Path(dir_okay=False))
@click.option("--baud", "-b", type=int, default=None, help="Baud rate (default 115200)")
@click.option(
    "--profile",
    "-p",
    "profile_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Session profile YAML (default: bundled SIMCom LFOTA profile)",
)
@click.option("--hexdump", is_flag=True, help="Print received segments as hex")
@click.option("--quiet-lines", is_flag=True, help="Do not echo received lines")
@click.pass_context
def run(
    ctx: click.Context,
    port: str,
    url: str,
    file: str,
    baud: Optional[int],
    profile_path: Optional[str],
    hexdump: bool,
    quiet_lines: bool,
) -> None:
    """Download URL to FILE through the modem, then flash it.

    PORT: Serial port path (e.g., /dev/ttyUSB2 or COM3)
    URL: Firmware URL fetched by the modem
    FILE: Local file receiving the firmware
    """
    try:
        profile = load_profile(profile_path or default_profile_path())
        serial_config = replace(SerialConfig.from_env(), port=port)
        if baud is not None:
            serial_config.baudrate = baud
        serial_config.validate()
    except (ProfileError, FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    console.print(f"[bold]Profile:[/bold] {profile.name} ({len(profile.steps)} steps)")
    console.print(f"[cyan]Port:[/cyan] {port} @ {serial_config.baudrate}")
    console.print(f"[cyan]URL:[/cyan] {url}")
    console.print(f"[cyan]File:[/cyan] {file}\n")

    emitter = EventEmitter()
    observer = ConsoleObserver(console, hexdump=hexdump, show_lines=not quiet_lines)
    observer.attach(emitter)

    try:
        result = run_session(
            profile,
            {"url": url, "file": file},
            serial_config,
            emitter,
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    finally:
        observer.detach()

    if result.success:
        console.print(f"\n[bold green]Session complete[/bold green] ({len(result.completed)} steps)")
        return

    console.print(
        f"\n[bold red]Session failed[/bold red] at step '{result.failed_step}': {result.error}"
    )
    if ctx.obj.get("verbose") and result.error is not None:
        logger.debug("Failure details", exc_info=result.error)
    sys.exit(result.exit_code)


@cli.command()
@click.argument("port")
@click.argument("command")
@click.option("--expect", "-e", default="OK", show_default=True, help="Response that ends the wait")
@click.option("--timeout", "-t", type=float, default=5.0, show_default=True, help="Timeout in seconds")
@click.option("--baud", "-b", type=int, default=115200, show_default=True, help="Baud rate")
def at(port: str, command: str, expect: str, timeout: float, baud: int) -> None:
    """Send one AT command and wait for its response.

    PORT: Serial port path (e.g., /dev/ttyUSB2)
    COMMAND: AT command to send (e.g., AT+CGMR)
    """
    emitter = EventEmitter()
    observer = ConsoleObserver(console)
    observer.attach(emitter)

    try:
        with SerialTransport.open(port, baud, emitter=emitter) as transport:
            reader = FrameReader(transport.rx_buffer, emitter)
            transport.send_command(command)
            if not reader.wait_for_response(expect, timeout):
                raise PatternTimeoutError(expect, timeout, command)
    except ModemError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)
    finally:
        observer.detach()


def main() -> None:
    """Console script entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
