"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Any

import typer

from fusectl.core import identifiers
from fusectl.core.codec import default_registry, encode_user_info
from fusectl.core.commands import CommandFrame, CommandType
from fusectl.core.config import AppConfig, load_config
from fusectl.core.errors import ConfigError, FusectlError, TransportTimeoutError
from fusectl.core.machine import SessionState
from fusectl.core.model import BatteryLevel, ServiceRequirement, TelemetryFrame
from fusectl.core.router import NotificationRouter
from fusectl.core.session import DeviceSession
from fusectl.core.telemetry import HeartRateMeasurement, decode_heart_rate_measurement
from fusectl.transports.ble_gatt import BleakTransport

DEFAULT_TIMEOUT_S = 10.0

app = typer.Typer(help="Mio FUSE wristband control over Bluetooth LE")


def _load(config: Path | None, device: str | None, verbose: bool) -> AppConfig:
    cfg = load_config(config, device=device)
    level = logging.DEBUG if verbose else getattr(logging, cfg.log_level)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if not verbose:
        logging.getLogger("bleak").setLevel(logging.WARNING)
    return cfg


def _session(
    cfg: AppConfig,
    *,
    plan: tuple[ServiceRequirement, ...],
    oneshot: bool = False,
    router: NotificationRouter | None = None,
) -> DeviceSession:
    transport = BleakTransport(timeout_s=cfg.timeout_s or DEFAULT_TIMEOUT_S)
    return DeviceSession(
        cfg.device,
        transport,
        plan=plan,
        router=router,
        oneshot=oneshot,
        connect_attempts=cfg.connect_attempts,
    )


async def _until_active(session: DeviceSession, timeout_s: float | None) -> None:
    try:
        await asyncio.wait_for(session.wait_for_state(SessionState.ACTIVE), timeout_s)
    except asyncio.TimeoutError:
        await session.stop()
        raise TransportTimeoutError(f"Timed out after {timeout_s}s waiting for {session.identity}") from None


def _echo_battery(level: BatteryLevel) -> None:
    typer.echo(f"Battery: {level.percent}%")


def _format_value(value: Any) -> str:
    if isinstance(value, HeartRateMeasurement):
        text = f"{value.bpm} bpm"
        if value.rr_intervals:
            text += " rr=" + ",".join(f"{rr:.3f}" for rr in value.rr_intervals)
        return text
    if isinstance(value, Enum):
        return value.name.lower()
    return str(value)


def _echo_telemetry(frame: TelemetryFrame) -> None:
    if frame.value is None:
        typer.echo(f"{frame.name}: {frame.data.hex()}")
    else:
        typer.echo(f"{frame.name}: {_format_value(frame.value)}")


def _parse_command(value: str) -> int:
    try:
        return int(value, 0)
    except ValueError:
        pass
    try:
        return CommandType[value.strip().upper()]
    except KeyError:
        raise typer.BadParameter(f"Unknown command '{value}'. Use a number or a name from 'fusectl commands'") from None


@app.command("battery")
def battery(
    config: Path | None = typer.Option(None, "--config", help="Configuration file"),
    device: str | None = typer.Option(None, "--device", help="Device address, overrides device_id"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Report the battery level once and disconnect."""
    try:
        cfg = _load(config, device, verbose)

        async def _main() -> None:
            session = _session(cfg, plan=identifiers.BATTERY_PLAN, oneshot=True)
            session.on_battery_level(_echo_battery)
            await session.start()
            try:
                await asyncio.wait_for(session.wait(), cfg.timeout_s)
            except asyncio.TimeoutError:
                await session.stop()
                raise TransportTimeoutError(f"Timed out after {cfg.timeout_s}s waiting for {cfg.device}") from None

        asyncio.run(_main())
    except FusectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("watch")
def watch(
    duration: float | None = typer.Option(None, "--duration", help="Stop after this many seconds"),
    decode_hr: bool = typer.Option(False, "--decode-hr", help="Decode heart rate measurements"),
    config: Path | None = typer.Option(None, "--config", help="Configuration file"),
    device: str | None = typer.Option(None, "--device", help="Device address, overrides device_id"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Stream battery and telemetry until interrupted."""
    try:
        cfg = _load(config, device, verbose)

        async def _main() -> None:
            router = NotificationRouter()
            if decode_hr:
                router.register(identifiers.CHAR_HEART_RATE.uuid, decode_heart_rate_measurement)
            session = _session(cfg, plan=identifiers.FULL_PLAN, router=router)
            session.on_battery_level(_echo_battery)
            session.on_telemetry(_echo_telemetry)
            session.on_decode_error(lambda error: typer.echo(f"Warning: {error}", err=True))
            await session.start()
            try:
                await _until_active(session, cfg.timeout_s)
                try:
                    await asyncio.wait_for(session.wait(), duration)
                except asyncio.TimeoutError:
                    pass
            finally:
                await session.stop()

        asyncio.run(_main())
    except KeyboardInterrupt:
        typer.echo("Interrupted", err=True)
    except FusectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("encode-profile")
def encode_profile(
    config: Path | None = typer.Option(None, "--config", help="Configuration file"),
    device: str | None = typer.Option(None, "--device", help="Device address, overrides device_id"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Validate the configured user_info and print its frame as hex."""
    try:
        cfg = _load(config, device, verbose)
        if cfg.user_info is None:
            raise ConfigError("Configuration has no user_info section")
        typer.echo(encode_user_info(cfg.user_info).hex())
    except FusectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("set-profile")
def set_profile(
    config: Path | None = typer.Option(None, "--config", help="Configuration file"),
    device: str | None = typer.Option(None, "--device", help="Device address, overrides device_id"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Send the configured user_info to the device."""
    try:
        cfg = _load(config, device, verbose)
        if cfg.user_info is None:
            raise ConfigError("Configuration has no user_info section")
        record = cfg.user_info
        # Validate before touching the radio.
        encode_user_info(record)

        async def _main() -> bytes:
            session = _session(cfg, plan=identifiers.COMMAND_PLAN)
            await session.start()
            try:
                await _until_active(session, cfg.timeout_s)
                return await session.send_user_info(record)
            finally:
                await session.stop()

        frame = asyncio.run(_main())
        typer.echo(f"Sent user info to {cfg.device} payload={frame.hex()}")
    except FusectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("send")
def send(
    command: str = typer.Argument(..., help="Command type number or name"),
    subcommand: int = typer.Argument(..., help="Sub-command byte"),
    payload: str = typer.Argument("", help="Payload as hex"),
    config: Path | None = typer.Option(None, "--config", help="Configuration file"),
    device: str | None = typer.Option(None, "--device", help="Device address, overrides device_id"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Send a raw command frame to the sport message characteristic."""
    try:
        body = bytes.fromhex(payload.replace(" ", ""))
    except ValueError:
        raise typer.BadParameter(f"Payload must be hex, got '{payload}'") from None
    try:
        frame = CommandFrame(command=_parse_command(command), subcommand=subcommand, payload=body)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from None

    try:
        cfg = _load(config, device, verbose)

        async def _main() -> None:
            session = _session(cfg, plan=identifiers.COMMAND_PLAN)
            await session.start()
            try:
                await _until_active(session, cfg.timeout_s)
                await session.send_frame(frame)
            finally:
                await session.stop()

        asyncio.run(_main())
        typer.echo(f"Sent {frame.to_bytes().hex()} to {cfg.device}")
    except FusectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("commands")
def list_commands() -> None:
    """List known command types and whether their frame layout is implemented."""
    for codec in default_registry():
        status = "implemented" if codec.implemented else "not implemented"
        dfu = " (dfu)" if codec.is_dfu else ""
        typer.echo(f"{codec.command.value:>2} {codec.command.name}: {status}{dfu}")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
