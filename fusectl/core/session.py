"""Device session: drives one peripheral from scanning to teardown.

A session owns an event queue. Transport callbacks and finished transport
operations post events to it, and a single dispatcher task applies them one
at a time through ``machine.transition``. The effects it returns are carried
out here. Anything that waits on the radio runs as its own task, so an
unsolicited disconnect is processed even while a read is outstanding.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine, Sequence
from dataclasses import replace
from functools import partial
from typing import Any, TypeVar

from fusectl.core import identifiers
from fusectl.core.codec import default_registry
from fusectl.core.commands import CommandFrame, CommandRegistry, CommandType
from fusectl.core.errors import (
    DisconnectedError,
    FusectlError,
    IncompatibleDeviceError,
    SessionStateError,
    TransportError,
)
from fusectl.core.machine import (
    AdvertisementSeen,
    CancelOutstanding,
    Connect,
    ConnectFailed,
    ConnectSucceeded,
    Disconnect,
    DisconnectComplete,
    Effect,
    Enqueue,
    Event,
    ExchangeReady,
    Finish,
    PayloadReceived,
    PeripheralLost,
    PowerChanged,
    ResolveServices,
    Route,
    ServicesResolved,
    SessionFailed,
    SessionPolicy,
    SessionState,
    Snapshot,
    StartExchange,
    StartScan,
    StopRequested,
    StopScan,
    transition,
)
from fusectl.core.model import (
    Advertisement,
    BatteryLevel,
    CharacteristicDescriptor,
    CharacteristicHandle,
    DeviceIdentity,
    PeripheralHandle,
    ResolvedCharacteristic,
    ServiceRequirement,
    UserInfo,
)
from fusectl.core.router import BatteryHandler, DecodeErrorHandler, NotificationRouter, TelemetryHandler
from fusectl.core.telemetry import decode_battery_level
from fusectl.core.validation import Validator
from fusectl.transports.base import PowerState, Transport

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
StateHandler = Callable[[SessionState, SessionState], None]


class DeviceSession:
    def __init__(
        self,
        identity: DeviceIdentity,
        transport: Transport,
        *,
        plan: Sequence[ServiceRequirement] = identifiers.FULL_PLAN,
        router: NotificationRouter | None = None,
        registry: CommandRegistry | None = None,
        validator: Validator | None = None,
        connect_attempts: int = 1,
        oneshot: bool = False,
    ) -> None:
        if connect_attempts < 1:
            raise ValueError("connect_attempts must be at least 1")
        self.identity = identity
        self.router = router or NotificationRouter()
        self.missing: list[str] = []
        self._transport = transport
        self._plan = tuple(plan)
        self._registry = registry or default_registry()
        self._validator = validator
        self._policy = SessionPolicy(identity=identity, connect_attempts=connect_attempts, oneshot=oneshot)
        self._snapshot = Snapshot()
        self._state_handlers: list[StateHandler] = []
        self._reached = {state: asyncio.Event() for state in SessionState}
        self._reached[SessionState.IDLE].set()

        self._loop: asyncio.AbstractEventLoop | None = None
        self._events: asyncio.Queue[Event] | None = None
        self._done: asyncio.Future[FusectlError | None] | None = None
        self._dispatcher: asyncio.Task[None] | None = None
        self._outstanding: set[asyncio.Future[Any]] = set()
        self._background: set[asyncio.Task[None]] = set()
        self._interrupted: DisconnectedError | None = None
        self._peripheral: PeripheralHandle | None = None
        self._characteristics: dict[str, ResolvedCharacteristic] = {}
        self._battery_echo: bytes | None = None

    @property
    def state(self) -> SessionState:
        return self._snapshot.state

    @property
    def error(self) -> FusectlError | None:
        return self._snapshot.error

    @property
    def characteristics(self) -> tuple[ResolvedCharacteristic, ...]:
        return tuple(self._characteristics.values())

    def on_battery_level(self, handler: BatteryHandler) -> None:
        self.router.on_battery_level(handler)

    def on_telemetry(self, handler: TelemetryHandler) -> None:
        self.router.on_telemetry(handler)

    def on_decode_error(self, handler: DecodeErrorHandler) -> None:
        self.router.on_decode_error(handler)

    def on_state(self, handler: StateHandler) -> None:
        self._state_handlers.append(handler)

    # Lifecycle

    async def start(self) -> None:
        if self._dispatcher is not None or self.state is not SessionState.IDLE:
            raise SessionStateError(f"Session for {self.identity} was already started")
        self._loop = asyncio.get_running_loop()
        self._events = asyncio.Queue()
        self._done = self._loop.create_future()
        self._dispatcher = asyncio.create_task(self._dispatch(), name=f"fusectl-session-{self.identity}")
        self._transport.watch_power(self._on_power)

    async def stop(self) -> None:
        """Request teardown from any state and wait until the session is disconnected."""
        if self._done is None:
            self._snapshot = replace(self._snapshot, state=SessionState.DISCONNECTED)
            self._reached[SessionState.DISCONNECTED].set()
            return
        self.post(StopRequested())
        await asyncio.shield(self._done)
        await self._drain_background()

    async def wait(self) -> None:
        """Wait for the session to end, raising the error that ended it, if any."""
        if self._done is None:
            raise SessionStateError(f"Session for {self.identity} was never started")
        error = await asyncio.shield(self._done)
        await self._drain_background()
        if error is not None:
            raise error

    async def wait_for_state(self, state: SessionState) -> None:
        if self._done is None:
            raise SessionStateError(f"Session for {self.identity} was never started")
        reached = self._reached[state]
        if not reached.is_set():
            waiter = asyncio.ensure_future(reached.wait())
            try:
                await asyncio.wait({waiter, self._done}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                waiter.cancel()
        if reached.is_set():
            return
        error = self._done.result()
        raise error or DisconnectedError(f"Session for {self.identity} ended before reaching {state.value}")

    def post(self, event: Event) -> None:
        """Queue an event for the dispatcher. Safe to call from transport threads."""
        loop, events = self._loop, self._events
        if loop is None or events is None or self._finished:
            LOGGER.debug("%s: ignoring %s after session end", self.identity, event)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            events.put_nowait(event)
        else:
            loop.call_soon_threadsafe(events.put_nowait, event)

    # Caller operations

    async def read_battery(self) -> BatteryLevel:
        handle = self._require(identifiers.CHAR_BATTERY)
        data = await self._guarded("battery read", lambda: self._transport.read(handle))
        return decode_battery_level(data)

    async def send_frame(self, frame: CommandFrame | bytes) -> None:
        handle = self._require(identifiers.CHAR_SPORT_MSG)
        data = frame.to_bytes() if isinstance(frame, CommandFrame) else bytes(frame)
        LOGGER.info("%s: writing command frame %s", self.identity, data.hex())
        await self._guarded("command write", lambda: self._transport.write(handle, data))

    async def send_user_info(self, record: UserInfo) -> bytes:
        frame = self._registry.encode(CommandType.USERINFO_SET, record, validator=self._validator)
        await self.send_frame(frame)
        return frame

    # Dispatch

    @property
    def _finished(self) -> bool:
        return self._done is not None and self._done.done()

    async def _dispatch(self) -> None:
        assert self._events is not None
        try:
            while not self._finished:
                event = await self._events.get()
                self._apply(event)
        finally:
            if not self._finished:
                self._finish(DisconnectedError(f"Session dispatcher for {self.identity} stopped"))

    def _apply(self, event: Event) -> None:
        before = self._snapshot
        after, effects = transition(before, event, self._policy)
        self._snapshot = after

        if after.state is not before.state:
            LOGGER.info("%s: %s -> %s", self.identity, before.state.value, after.state.value)
            self._reached[after.state].set()
            for handler in self._state_handlers:
                try:
                    handler(before.state, after.state)
                except Exception:
                    LOGGER.exception("State observer %r failed", handler)
        elif not effects:
            LOGGER.debug("%s: %s ignored in state %s", self.identity, type(event).__name__, before.state.value)

        for effect in effects:
            self._execute(effect)

    def _execute(self, effect: Effect) -> None:
        if isinstance(effect, StartScan):
            self._spawn(self._scan())
        elif isinstance(effect, StopScan):
            self._spawn_background(self._stop_scan())
        elif isinstance(effect, Connect):
            self._spawn(self._connect(effect.advertisement))
        elif isinstance(effect, ResolveServices):
            self._spawn(self._resolve())
        elif isinstance(effect, StartExchange):
            self._spawn(self._exchange(effect.characteristics))
        elif isinstance(effect, Route):
            self._route(effect)
        elif isinstance(effect, Enqueue):
            self.post(effect.event)
        elif isinstance(effect, CancelOutstanding):
            self._cancel_outstanding()
        elif isinstance(effect, Disconnect):
            self._spawn_background(self._disconnect())
        elif isinstance(effect, Finish):
            self._finish(effect.error)
        else:
            raise TypeError(f"Unhandled effect {effect!r}")

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._outstanding.add(task)
        task.add_done_callback(self._on_task_done)

    def _spawn_background(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Future[Any]) -> None:
        self._outstanding.discard(task)
        self._background.discard(task)  # type: ignore[arg-type]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("%s: internal operation failed", self.identity, exc_info=exc)
            self.post(SessionFailed(FusectlError(f"Internal error: {exc}")))

    def _cancel_outstanding(self) -> None:
        if self._interrupted is None:
            self._interrupted = DisconnectedError(f"Session for {self.identity} ended while the operation was pending")
        for future in list(self._outstanding):
            future.cancel()

    def _finish(self, error: FusectlError | None) -> None:
        self._cancel_outstanding()
        if self._done is not None and not self._done.done():
            self._done.set_result(error)
        if error is not None:
            LOGGER.error("%s: session ended with error: %s", self.identity, error)

    async def _drain_background(self) -> None:
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def _guarded(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run a caller-visible transport call that fails with DisconnectedError if the session ends."""
        if self._finished:
            raise DisconnectedError(f"{operation} failed: session for {self.identity} has ended")
        future = asyncio.ensure_future(call())
        self._outstanding.add(future)
        try:
            return await future
        except asyncio.CancelledError:
            if future.cancelled() and self._interrupted is not None:
                raise DisconnectedError(f"{operation} interrupted: {self._interrupted}") from None
            raise
        finally:
            self._outstanding.discard(future)

    def _require(self, descriptor: CharacteristicDescriptor) -> CharacteristicHandle:
        if self._finished:
            raise DisconnectedError(f"Session for {self.identity} has ended")
        if self.state is not SessionState.ACTIVE:
            raise SessionStateError(f"{descriptor.name} needs an active session (state: {self.state.value})")
        resolved = self._characteristics.get(descriptor.uuid)
        if resolved is None:
            raise IncompatibleDeviceError(
                f"{descriptor.name} characteristic was not resolved on {self.identity}",
                service=descriptor.service,
                characteristic=descriptor.key,
            )
        return resolved.handle

    # Transport callbacks

    def _on_power(self, power: PowerState) -> None:
        LOGGER.info("State of BT: %s", power.value)
        self.post(PowerChanged(power))

    def _on_advertisement(self, advertisement: Advertisement) -> None:
        self.post(AdvertisementSeen(advertisement))

    def _on_link_lost(self) -> None:
        self.post(PeripheralLost())

    def _on_notify(self, characteristic: str, data: bytes) -> None:
        self.post(PayloadReceived(characteristic, bytes(data)))

    # Effects

    async def _scan(self) -> None:
        LOGGER.info("Scanning for ID: %s", self.identity)
        try:
            await self._transport.scan(self._on_advertisement)
        except TransportError as exc:
            self.post(SessionFailed(exc))

    async def _stop_scan(self) -> None:
        try:
            await self._transport.stop_scan()
        except TransportError as exc:
            LOGGER.warning("Failed to stop scanning: %s", exc)

    async def _connect(self, advertisement: Advertisement) -> None:
        _log_advertisement(advertisement)
        try:
            peripheral = await self._transport.connect(advertisement, self._on_link_lost)
        except TransportError as exc:
            LOGGER.warning("Connection to %s failed: %s", advertisement.address, exc)
            self.post(ConnectFailed(exc))
            return
        self._peripheral = peripheral
        LOGGER.info("Connection ok")
        self.post(ConnectSucceeded())

    async def _resolve(self) -> None:
        resolved: list[ResolvedCharacteristic] = []
        try:
            for requirement in self._plan:
                resolved.extend(await self._resolve_service(requirement))
        except IncompatibleDeviceError as exc:
            self.post(SessionFailed(exc))
            return
        self._characteristics = {r.descriptor.uuid: r for r in resolved}
        self.post(ServicesResolved(tuple(resolved)))

    async def _resolve_service(self, requirement: ServiceRequirement) -> list[ResolvedCharacteristic]:
        assert self._peripheral is not None
        service = requirement.service
        try:
            handles = await self._transport.discover_services(self._peripheral, [service.uuid])
        except TransportError as exc:
            return self._unresolved(requirement, f"{service.name} service discovery failed: {exc}", cause=exc)
        if not handles:
            return self._unresolved(requirement, f"{service.name} service not found")
        LOGGER.info("%s found (service=%s)", service.name, handles[0].uuid)

        wanted = [c.uuid for c in requirement.characteristics]
        try:
            found = await self._transport.discover_characteristics(handles[0], wanted)
        except TransportError as exc:
            return self._unresolved(requirement, f"Failed to discover {service.name} characteristics: {exc}", cause=exc)

        by_uuid = {identifiers.uuid128(h.uuid): h for h in found}
        resolved: list[ResolvedCharacteristic] = []
        for descriptor in requirement.characteristics:
            handle = by_uuid.get(descriptor.uuid)
            if handle is None:
                self._unresolved(
                    requirement,
                    f"{descriptor.name} characteristic not found in {service.name} service",
                    characteristic=descriptor,
                )
                continue
            resolved.append(ResolvedCharacteristic(descriptor=descriptor, handle=handle, required=requirement.required))
        return resolved

    def _unresolved(
        self,
        requirement: ServiceRequirement,
        message: str,
        *,
        characteristic: CharacteristicDescriptor | None = None,
        cause: Exception | None = None,
    ) -> list[ResolvedCharacteristic]:
        if requirement.required:
            raise IncompatibleDeviceError(
                message,
                service=requirement.service.key,
                characteristic=characteristic.key if characteristic else None,
            ) from cause
        LOGGER.warning("%s; continuing without it", message)
        self.missing.append(characteristic.key if characteristic else requirement.service.key)
        return []

    async def _exchange(self, characteristics: tuple[ResolvedCharacteristic, ...]) -> None:
        try:
            for resolved in characteristics:
                await self._engage(resolved)
        except TransportError as exc:
            self.post(SessionFailed(exc))
            return
        self.post(ExchangeReady())

    async def _engage(self, resolved: ResolvedCharacteristic) -> None:
        descriptor, handle = resolved.descriptor, resolved.handle
        properties = handle.properties or descriptor.properties
        notifiable = bool(properties & {"notify", "indicate"})
        is_battery = descriptor.uuid == identifiers.CHAR_BATTERY.uuid

        # Battery is always read once up front so a value is reported before streaming starts.
        if is_battery or ("read" in properties and not notifiable):
            try:
                data = await self._transport.read(handle)
            except TransportError as exc:
                LOGGER.warning("Error reading %s: %s", descriptor.name, exc)
            else:
                if is_battery:
                    self._battery_echo = bytes(data)
                self.post(PayloadReceived(descriptor.uuid, bytes(data), subscribed=False))

        if not notifiable:
            return
        try:
            await self._transport.subscribe(handle, partial(self._on_notify, descriptor.uuid))
        except TransportError as exc:
            if resolved.required:
                raise IncompatibleDeviceError(
                    f"Failed to subscribe to {descriptor.name}: {exc}",
                    service=descriptor.service,
                    characteristic=descriptor.key,
                ) from exc
            LOGGER.warning("Failed to subscribe to %s: %s", descriptor.name, exc)
            return
        LOGGER.debug("Subscribed to %s", descriptor.name)

    def _route(self, effect: Route) -> None:
        if effect.subscribed and effect.characteristic == identifiers.CHAR_BATTERY.uuid and self._battery_echo is not None:
            echo, self._battery_echo = self._battery_echo, None
            if echo == effect.data:
                LOGGER.debug("Dropping battery notification repeating the initial read")
                return
        self.router.dispatch(effect.characteristic, effect.data)

    async def _disconnect(self) -> None:
        peripheral = self._peripheral
        if peripheral is None and self._snapshot.peripheral is not None:
            peripheral = PeripheralHandle(address=self._snapshot.peripheral.address)
        if peripheral is not None:
            try:
                await self._transport.disconnect(peripheral)
            except TransportError as exc:
                LOGGER.warning("Error during disconnect: %s", exc)
        self.post(DisconnectComplete())


def _log_advertisement(advertisement: Advertisement) -> None:
    if advertisement.name:
        LOGGER.info("Device found: %s", advertisement.name)
    else:
        LOGGER.info("Device found")
    LOGGER.info("\tLocal Name        = %s", advertisement.local_name)
    LOGGER.info("\tTX Power Level    = %s", advertisement.tx_power)
    LOGGER.info("\tRSSI              = %s", advertisement.rssi)
    LOGGER.info("\tManufacturer Data = %s", {k: v.hex() for k, v in advertisement.manufacturer_data.items()})
    LOGGER.info("\tService Data      = %s", {k: v.hex() for k, v in advertisement.service_data.items()})
