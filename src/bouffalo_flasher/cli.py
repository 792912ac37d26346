"""
Bouffalo Flasher CLI

Command-line interface for the BL60x boot ROM and eflash loader.
"""

import sys
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn, DownloadColumn

from bouffalo_flasher.config import (
    DEFAULT_BAUD_RATE,
    DEFAULT_FLASH_TIMEOUT,
    DEFAULT_PORT,
    DEFAULT_PROGRAM_BAUD_RATE,
    DEFAULT_TIMEOUT,
    ENV_BAUD_RATE,
    ENV_EFLASH_LOADER,
    ENV_SERIAL_PORT,
    SerialConfig,
    config_from_env,
)
from bouffalo_flasher.errors import FlasherError
from bouffalo_flasher.elf import load_elf
from bouffalo_flasher.protocol.transport import list_ports
from bouffalo_flasher.core.parsing import parse_address, parse_size
from bouffalo_flasher.core.results import OperationResult
from bouffalo_flasher.core.safety import (
    CONFIRMATION_TOKEN,
    SafetyContext,
    WritePermissionError,
)
from bouffalo_flasher.core.actions import (
    erase_flash as core_erase_flash,
    inspect_image as core_inspect_image,
    read_boot_info as core_read_boot_info,
    read_flash as core_read_flash,
    write_flash as core_write_flash,
)

# Setup logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("bouffalo_flasher")

# Setup Rich console
console = Console()

app = typer.Typer(help="Bouffalo BL60x flasher - boot ROM info, flash read/write/erase")
flash_app = typer.Typer(help="Operate on the external SPI flash")
app.add_typer(flash_app, name="flash")


def print_header(text: str) -> None:
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    console.print(f"❌ {text}", style="red")


def print_result(result: OperationResult, as_json: bool = False) -> None:
    """Print an OperationResult and exit non-zero on failure."""
    if as_json:
        console.print_json(json.dumps(result.to_dict()))
    else:
        for warning in result.warnings:
            print_warning(warning)
        for error in result.errors:
            print_error(error)
        console.print(result.to_summary(), style="dim" if result.ok else "red")
    if not result.ok:
        raise typer.Exit(code=1)


def _config(ctx: typer.Context) -> SerialConfig:
    return ctx.obj


def _parse_or_exit(parser, value: str, label: str) -> int:
    try:
        return parser(value)
    except ValueError as e:
        print_error(f"Invalid {label}: {e}")
        raise typer.Exit(code=2)


def _progress(description: str):
    return Progress(
        TextColumn(f"[bold]{description}"),
        BarColumn(),
        DownloadColumn(),
        TextColumn("[{task.percentage:.0f}%]"),
        console=console,
    )


def build_safety_context(write: bool, confirm: Optional[str], simulate: bool) -> SafetyContext:
    """
    SafetyContext for flash-modifying commands.

    Supports three modes:
    1. Non-interactive (script): --write --confirm WRITE, no prompts
    2. Interactive (TTY): --write, then a typed confirmation
    3. Dry run: --simulate, nothing is sent
    """
    def show_details(details: dict) -> None:
        console.print(Panel(
            f"[bold yellow]⚠️  FLASH {details['operation'].upper()}[/bold yellow]\n\n"
            f"Region:  {details['region']}\n"
            f"Bytes:   {details['bytes_length']:,}\n",
            title="Confirmation required",
            expand=False,
        ))

    def prompt_confirmation(prompt_text: str) -> str:
        return typer.prompt(prompt_text)

    return SafetyContext(
        write_enabled=write,
        confirmation_token=confirm,
        interactive=sys.stdin.isatty() and confirm is None,
        simulate=simulate,
        prompt_confirmation=prompt_confirmation,
        show_details=show_details,
    )


@app.callback()
def common(
    ctx: typer.Context,
    port: Optional[str] = typer.Option(
        None, "--port", "-p", help=f"Serial port [env: {ENV_SERIAL_PORT}, default: {DEFAULT_PORT}]"
    ),
    baud_rate: Optional[int] = typer.Option(
        None, "--baud-rate", "-b", help=f"Boot ROM baud rate [env: {ENV_BAUD_RATE}, default: {DEFAULT_BAUD_RATE}]"
    ),
    program_baud_rate: int = typer.Option(
        DEFAULT_PROGRAM_BAUD_RATE, "--program-baud-rate", help="Baud rate once the eflash loader runs"
    ),
    timeout: float = typer.Option(DEFAULT_TIMEOUT, "--timeout", help="Serial timeout in seconds"),
    flash_timeout: float = typer.Option(
        DEFAULT_FLASH_TIMEOUT, "--flash-timeout", help="Timeout for erase/program/read in seconds"
    ),
    no_reset: bool = typer.Option(False, "--no-reset", help="Do not pulse RTS/DTR before the handshake"),
    loader: Optional[Path] = typer.Option(
        None, "--loader", help=f"eflash loader image (boot header + segments) [env: {ENV_EFLASH_LOADER}]"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show protocol traffic"),
) -> None:
    """Connection options shared by every command."""
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    try:
        ctx.obj = config_from_env().with_overrides(
            port=port,
            baud_rate=baud_rate,
            program_baud_rate=program_baud_rate,
            timeout=timeout,
            flash_timeout=flash_timeout,
            reset=not no_reset,
            loader_path=loader,
        )
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(code=2)


@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    ports_list = list_ports()
    if not ports_list:
        print_warning("No serial ports found")
        return

    table = Table(title="Serial Ports")
    table.add_column("Port", style="cyan")
    table.add_column("Device", style="magenta")
    table.add_column("Description", style="green")

    for port in ports_list:
        table.add_row(port.device, port.name or "-", port.description or "-")

    console.print(table)


@app.command()
def info(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """Get and print the boot ROM info."""
    config = _config(ctx)
    if not as_json:
        print_header("Boot ROM Info")
        console.print(f"Port: {config.port} @ {config.baud_rate} bps")

    result = core_read_boot_info(config)
    if result.ok and not as_json:
        table = Table(title="Boot ROM")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Version", str(result.metadata["version"]))
        table.add_row("OTP info", result.metadata["otp_info"])
        console.print(table)
    print_result(result, as_json)


@app.command("inspect-header")
def inspect_header(
    image: Path = typer.Argument(..., help="Boot header or loader image file"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """Decode a 176-byte boot header (and any segments after it)."""
    result = core_inspect_image(image)
    if result.ok and not as_json:
        print_header(f"Boot Header: {image.name}")
        table = Table()
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="green")
        for key, value in result.metadata.items():
            if key != "segments":
                table.add_row(key, str(value))
        table.add_row("image_hash", result.hashes.get("image_hash", ""))
        console.print(table)

        segments = result.metadata.get("segments", [])
        if segments:
            seg_table = Table(title=f"{len(segments)} Segment(s)")
            seg_table.add_column("#", style="dim")
            seg_table.add_column("Destination", style="cyan")
            seg_table.add_column("Size", style="green")
            for index, segment in enumerate(segments, 1):
                seg_table.add_row(str(index), segment["dest_addr"], f"{segment['size']:,}")
            console.print(seg_table)
    print_result(result, as_json)


@app.command("elf-info")
def elf_info(elf_file: Path = typer.Argument(..., help="ELF firmware file")) -> None:
    """List the loadable segments of an ELF file."""
    try:
        image = load_elf(elf_file)
    except (FlasherError, OSError) as e:
        print_error(f"Cannot read {elf_file}: {e}")
        raise typer.Exit(code=1)

    print_header(f"ELF: {elf_file.name}")
    console.print(f"Entry point: 0x{image.entry:08X}")

    table = Table(title="Loadable Segments")
    table.add_column("#", style="dim")
    table.add_column("Address", style="cyan")
    table.add_column("Size", style="green")
    for index, segment in enumerate(image.segments, 1):
        table.add_row(str(index), str(segment.dest_addr), f"{segment.size:,}")
    console.print(table)
    console.print(f"Total: {image.total_size:,} bytes")


@flash_app.command("read")
def flash_read(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="Flash offset: decimal, 0x hex or h-suffix hex"),
    size: str = typer.Argument(..., help="Bytes to read (accepts K/M suffix)"),
    output: Path = typer.Argument(Path("flash.bin"), help="File to save the contents to"),
) -> None:
    """Read external flash contents."""
    config = _config(ctx)
    addr = _parse_or_exit(parse_address, address, "address")
    length = _parse_or_exit(parse_size, size, "size")

    print_header("Read Flash")
    console.print(f"Region: 0x{addr:06X} + {length:,} bytes -> {output}")

    with _progress("Reading") as progress:
        task = progress.add_task("read", total=length)
        result = core_read_flash(
            config,
            addr,
            length,
            output_path=output,
            progress_cb=lambda done, total: progress.update(task, completed=done),
        )

    if result.ok:
        print_success(f"Saved {length:,} bytes to {output} (device SHA-256 matches)")
    print_result(result)


@flash_app.command("write")
def flash_write(
    ctx: typer.Context,
    input_file: Path = typer.Argument(..., help="The file to write"),
    address: str = typer.Argument(..., help="Flash offset (4096-aligned)"),
    size: Optional[str] = typer.Argument(None, help="Bytes to write (default: whole file)"),
    write: bool = typer.Option(False, "--write", help="Required flag to enable writing to flash"),
    confirm: Optional[str] = typer.Option(
        None, "--confirm", help=f"Non-interactive confirmation token (must be '{CONFIRMATION_TOKEN}')"
    ),
    simulate: bool = typer.Option(False, "--simulate", help="Dry run; nothing is sent"),
    no_verify: bool = typer.Option(False, "--no-verify", help="Skip the SHA-256 check"),
) -> None:
    """Write external flash contents (erase + program + verify)."""
    config = _config(ctx)
    addr = _parse_or_exit(parse_address, address, "address")

    try:
        data = input_file.read_bytes()
    except OSError as e:
        print_error(f"Cannot read {input_file}: {e}")
        raise typer.Exit(code=1)

    if size is not None:
        length = _parse_or_exit(parse_size, size, "size")
        if length > len(data):
            print_error(f"Size {length:,} exceeds file length {len(data):,}")
            raise typer.Exit(code=2)
        data = data[:length]

    print_header("Write Flash")
    console.print(f"File: {input_file} ({len(data):,} bytes)")
    console.print(f"Target: 0x{addr:06X}")

    safety_ctx = build_safety_context(write, confirm, simulate)
    try:
        with _progress("Writing") as progress:
            task = progress.add_task("write", total=len(data))
            result = core_write_flash(
                config,
                addr,
                data,
                safety_ctx,
                verify=not no_verify,
                progress_cb=lambda done, total: progress.update(task, completed=done),
            )
    except WritePermissionError as e:
        print_error(e.reason)
        raise typer.Exit(code=1)

    if result.ok:
        print_success("Flash written" + ("" if no_verify else " and verified"))
    print_result(result)


@flash_app.command("erase")
def flash_erase(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="Flash offset (4096-aligned)"),
    size: str = typer.Argument(..., help="Bytes to erase (multiple of 4096)"),
    write: bool = typer.Option(False, "--write", help="Required flag to enable erasing flash"),
    confirm: Optional[str] = typer.Option(
        None, "--confirm", help=f"Non-interactive confirmation token (must be '{CONFIRMATION_TOKEN}')"
    ),
    simulate: bool = typer.Option(False, "--simulate", help="Dry run; nothing is sent"),
) -> None:
    """Erase flash contents."""
    config = _config(ctx)
    addr = _parse_or_exit(parse_address, address, "address")
    length = _parse_or_exit(parse_size, size, "size")

    print_header("Erase Flash")
    console.print(f"Region: 0x{addr:06X} + {length:,} bytes")

    try:
        result = core_erase_flash(config, addr, length, build_safety_context(write, confirm, simulate))
    except WritePermissionError as e:
        print_error(e.reason)
        raise typer.Exit(code=1)

    if result.ok:
        print_success("Flash erased")
    print_result(result)


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        console.print(f"\n[red bold]Fatal error:[/red bold] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
