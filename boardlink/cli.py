"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import typer

from boardlink.core.errors import BoardlinkError, UnknownPeripheralError
from boardlink.core.model import ConnectionConfig, DiscoveryFilter, UploadRequest
from boardlink.core.scanner import enumerate_peripherals
from boardlink.core.settings import Settings, load_settings
from boardlink.transports.serialport import SerialportSession

app = typer.Typer(help="Discover serial boards and upload code or firmware to them")

_PORT_WAIT_S = 3.0


class ConsoleChannel:
    """Prints upload events pushed by a session."""

    def __init__(self) -> None:
        self.succeeded = False

    def send_remote_request(self, method: str, params: dict[str, Any] | None) -> None:
        params = params or {}
        if method == "uploadStdout":
            typer.echo(params.get("message", ""), nl=False)
        elif method == "uploadError":
            typer.echo(f"Error: {params.get('message', '')}", err=True, nl=False)
        elif method == "uploadSuccess":
            self.succeeded = True
            typer.echo("Upload succeeded")
        elif method == "peripheralUnplug":
            typer.echo("Warning: board disconnected; replug it and retry", err=True)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_settings() -> Settings:
    loaded = load_settings()
    for warning in loaded.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return loaded.settings


async def _open_session(
    channel: ConsoleChannel,
    settings: Settings,
    port: str,
    baud: int,
) -> SerialportSession:
    session = SerialportSession(channel, settings)
    await session.discover(DiscoveryFilter(pnpid=frozenset({"*"})))
    loop = asyncio.get_running_loop()
    deadline = loop.time() + _PORT_WAIT_S
    while port not in session.peripherals:
        if loop.time() > deadline:
            await session.dispose()
            raise UnknownPeripheralError(f"Serial port {port} not found")
        await asyncio.sleep(settings.scan_interval_s)
    try:
        await session.connect(port, ConnectionConfig(baud_rate=baud))
    except BaseException:
        await session.dispose()
        raise
    return session


async def _upload(
    settings: Settings,
    port: str,
    baud: int,
    request: UploadRequest | None,
    board_config: dict[str, Any],
) -> bool:
    channel = ConsoleChannel()
    session = await _open_session(channel, settings, port, baud)
    try:
        if request is None:
            await session.upload_firmware(board_config)
        else:
            await session.upload(request)
    finally:
        await session.dispose()
    return channel.succeeded


def _board_config(board: str, fqbn: str | None, firmware: str | None) -> dict[str, Any]:
    config: dict[str, Any] = {"type": board}
    if fqbn:
        config["fqbn"] = fqbn
    if firmware:
        config["firmware"] = firmware
    return config


@app.command("ports")
def list_ports(
    pnpid: list[str] = typer.Option(["*"], "--pnpid", help="USB\\VID_xxxx&PID_yyyy key, or * for all"),
) -> None:
    """List serial ports that match the discovery filter."""
    try:
        settings = _load_settings()
        peripherals = enumerate_peripherals(
            DiscoveryFilter.from_params({"pnpid": pnpid}),
            settings.device_names,
        )
        if not peripherals:
            typer.echo("No serial devices found")
            return
        for peripheral in peripherals:
            typer.echo(f"{peripheral.id} {peripheral.pnpid or '-'} {peripheral.name}")
    except BoardlinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("upload")
def upload(
    port: str,
    source: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    board: str = typer.Option(..., "--board", help="Board family: arduino or microbit"),
    fqbn: str | None = typer.Option(None, "--fqbn", help="Arduino fully qualified board name"),
    baud: int = typer.Option(115200, "--baud", help="Baud rate for the session"),
) -> None:
    """Build and flash SOURCE to the board on PORT."""
    try:
        settings = _load_settings()
        request = UploadRequest(
            board_type=board,
            source_code=source.read_text(encoding="utf-8"),
            board_config=_board_config(board, fqbn, None),
        )
        ok = asyncio.run(_upload(settings, port, baud, request, request.board_config))
    except BoardlinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    if not ok:
        raise typer.Exit(code=1)


@app.command("firmware")
def firmware(
    port: str,
    board: str = typer.Option(..., "--board", help="Board family: arduino or microbit"),
    fqbn: str | None = typer.Option(None, "--fqbn", help="Arduino fully qualified board name"),
    image: str | None = typer.Option(None, "--image", help="Firmware file name in the toolchain"),
    baud: int = typer.Option(115200, "--baud", help="Baud rate for the session"),
) -> None:
    """Flash the board family's standard firmware to the board on PORT."""
    try:
        settings = _load_settings()
        config = _board_config(board, fqbn, image)
        ok = asyncio.run(_upload(settings, port, baud, None, config))
    except BoardlinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    if not ok:
        raise typer.Exit(code=1)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
