"""Session lifecycle as a pure transition function.

``transition(snapshot, event, policy)`` returns the next snapshot and the
effects the session must carry out. It performs no I/O, so the whole
lifecycle can be exercised without a radio.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum

from fusectl.core.device_match import matches_identity
from fusectl.core.errors import DisconnectedError, FusectlError
from fusectl.core.model import Advertisement, DeviceIdentity, ResolvedCharacteristic
from fusectl.transports.base import PowerState


class SessionState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    DISCOVERED = "discovered"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SERVICES_RESOLVED = "services_resolved"
    ACTIVE = "active"
    DISCONNECTING = "disconnecting"
    DISCONNECTED = "disconnected"


LINKED_STATES = frozenset(
    {
        SessionState.CONNECTED,
        SessionState.SERVICES_RESOLVED,
        SessionState.ACTIVE,
        SessionState.DISCONNECTING,
    }
)


@dataclass(frozen=True)
class SessionPolicy:
    identity: DeviceIdentity
    connect_attempts: int = 1
    oneshot: bool = False


@dataclass(frozen=True)
class Snapshot:
    state: SessionState = SessionState.IDLE
    peripheral: Advertisement | None = None
    attempts: int = 0
    characteristics: tuple[ResolvedCharacteristic, ...] = ()
    error: FusectlError | None = None


# Events


class Event:
    pass


@dataclass(frozen=True)
class PowerChanged(Event):
    power: PowerState


@dataclass(frozen=True)
class AdvertisementSeen(Event):
    advertisement: Advertisement


@dataclass(frozen=True)
class ConnectStarted(Event):
    pass


@dataclass(frozen=True)
class ConnectSucceeded(Event):
    pass


@dataclass(frozen=True)
class ConnectFailed(Event):
    error: FusectlError


@dataclass(frozen=True)
class ServicesResolved(Event):
    characteristics: tuple[ResolvedCharacteristic, ...]


@dataclass(frozen=True)
class ExchangeReady(Event):
    pass


@dataclass(frozen=True)
class WorkComplete(Event):
    pass


@dataclass(frozen=True)
class PayloadReceived(Event):
    characteristic: str
    data: bytes
    subscribed: bool = True


@dataclass(frozen=True)
class SessionFailed(Event):
    error: FusectlError


@dataclass(frozen=True)
class StopRequested(Event):
    pass


@dataclass(frozen=True)
class PeripheralLost(Event):
    pass


@dataclass(frozen=True)
class DisconnectComplete(Event):
    pass


# Effects


class Effect:
    pass


@dataclass(frozen=True)
class StartScan(Effect):
    pass


@dataclass(frozen=True)
class StopScan(Effect):
    pass


@dataclass(frozen=True)
class Connect(Effect):
    advertisement: Advertisement


@dataclass(frozen=True)
class ResolveServices(Effect):
    pass


@dataclass(frozen=True)
class StartExchange(Effect):
    characteristics: tuple[ResolvedCharacteristic, ...]


@dataclass(frozen=True)
class Route(Effect):
    characteristic: str
    data: bytes
    subscribed: bool


@dataclass(frozen=True)
class Enqueue(Effect):
    event: Event


@dataclass(frozen=True)
class CancelOutstanding(Effect):
    pass


@dataclass(frozen=True)
class Disconnect(Effect):
    pass


@dataclass(frozen=True)
class Finish(Effect):
    error: FusectlError | None = None


Outcome = tuple[Snapshot, tuple[Effect, ...]]
_Handler = Callable[[Snapshot, Event, SessionPolicy], Outcome]


def _power_on(snapshot: Snapshot, event: PowerChanged, policy: SessionPolicy) -> Outcome:
    if event.power is not PowerState.POWERED_ON:
        return snapshot, ()
    return replace(snapshot, state=SessionState.SCANNING), (StartScan(),)


def _power_lost_while_scanning(snapshot: Snapshot, event: PowerChanged, policy: SessionPolicy) -> Outcome:
    if event.power is PowerState.POWERED_ON:
        return snapshot, ()
    return replace(snapshot, state=SessionState.IDLE), (StopScan(),)


def _advertisement(snapshot: Snapshot, event: AdvertisementSeen, policy: SessionPolicy) -> Outcome:
    if not matches_identity(event.advertisement, policy.identity):
        return snapshot, ()
    return (
        replace(snapshot, state=SessionState.DISCOVERED, peripheral=event.advertisement),
        (StopScan(), Enqueue(ConnectStarted())),
    )


def _connect_started(snapshot: Snapshot, event: ConnectStarted, policy: SessionPolicy) -> Outcome:
    assert snapshot.peripheral is not None
    return (
        replace(snapshot, state=SessionState.CONNECTING, attempts=snapshot.attempts + 1),
        (Connect(snapshot.peripheral),),
    )


def _connect_succeeded(snapshot: Snapshot, event: ConnectSucceeded, policy: SessionPolicy) -> Outcome:
    return replace(snapshot, state=SessionState.CONNECTED), (ResolveServices(),)


def _connect_failed(snapshot: Snapshot, event: ConnectFailed, policy: SessionPolicy) -> Outcome:
    if snapshot.attempts < policy.connect_attempts:
        return replace(snapshot, state=SessionState.SCANNING, peripheral=None), (StartScan(),)
    return replace(snapshot, state=SessionState.DISCONNECTED, error=event.error), (Finish(event.error),)


def _services_resolved(snapshot: Snapshot, event: ServicesResolved, policy: SessionPolicy) -> Outcome:
    return (
        replace(snapshot, state=SessionState.SERVICES_RESOLVED, characteristics=event.characteristics),
        (StartExchange(event.characteristics),),
    )


def _exchange_ready(snapshot: Snapshot, event: ExchangeReady, policy: SessionPolicy) -> Outcome:
    effects: tuple[Effect, ...] = (Enqueue(WorkComplete()),) if policy.oneshot else ()
    return replace(snapshot, state=SessionState.ACTIVE), effects


def _work_complete(snapshot: Snapshot, event: WorkComplete, policy: SessionPolicy) -> Outcome:
    return replace(snapshot, state=SessionState.DISCONNECTING), (Disconnect(),)


def _payload(snapshot: Snapshot, event: PayloadReceived, policy: SessionPolicy) -> Outcome:
    return snapshot, (Route(event.characteristic, event.data, event.subscribed),)


def _disconnect_complete(snapshot: Snapshot, event: DisconnectComplete, policy: SessionPolicy) -> Outcome:
    return replace(snapshot, state=SessionState.DISCONNECTED), (Finish(snapshot.error),)


_TRANSITIONS: dict[tuple[SessionState, type[Event]], _Handler] = {
    (SessionState.IDLE, PowerChanged): _power_on,
    (SessionState.SCANNING, PowerChanged): _power_lost_while_scanning,
    (SessionState.SCANNING, AdvertisementSeen): _advertisement,
    (SessionState.DISCOVERED, ConnectStarted): _connect_started,
    (SessionState.CONNECTING, ConnectSucceeded): _connect_succeeded,
    (SessionState.CONNECTING, ConnectFailed): _connect_failed,
    (SessionState.CONNECTED, ServicesResolved): _services_resolved,
    (SessionState.SERVICES_RESOLVED, ExchangeReady): _exchange_ready,
    (SessionState.SERVICES_RESOLVED, PayloadReceived): _payload,
    (SessionState.ACTIVE, PayloadReceived): _payload,
    (SessionState.ACTIVE, WorkComplete): _work_complete,
    (SessionState.DISCONNECTING, DisconnectComplete): _disconnect_complete,
}


def _failed(snapshot: Snapshot, error: FusectlError) -> Outcome:
    state = snapshot.state
    if state is SessionState.DISCONNECTED:
        return snapshot, ()
    if state is SessionState.DISCONNECTING:
        return snapshot if snapshot.error else replace(snapshot, error=error), ()
    if state in LINKED_STATES or state is SessionState.CONNECTING:
        return (
            replace(snapshot, state=SessionState.DISCONNECTING, error=error),
            (CancelOutstanding(), Disconnect()),
        )
    effects: tuple[Effect, ...] = (StopScan(),) if state is SessionState.SCANNING else ()
    return replace(snapshot, state=SessionState.DISCONNECTED, error=error), (*effects, Finish(error))


def _stop(snapshot: Snapshot) -> Outcome:
    state = snapshot.state
    if state in (SessionState.DISCONNECTING, SessionState.DISCONNECTED):
        return snapshot, ()
    if state in LINKED_STATES or state is SessionState.CONNECTING:
        return replace(snapshot, state=SessionState.DISCONNECTING), (CancelOutstanding(), Disconnect())
    effects: tuple[Effect, ...] = (StopScan(),) if state is SessionState.SCANNING else ()
    return replace(snapshot, state=SessionState.DISCONNECTED), (*effects, Finish(snapshot.error))


def _lost(snapshot: Snapshot) -> Outcome:
    if snapshot.state not in LINKED_STATES:
        return snapshot, ()
    error = snapshot.error
    if error is None and snapshot.state in (SessionState.CONNECTED, SessionState.SERVICES_RESOLVED):
        address = snapshot.peripheral.address if snapshot.peripheral else "peripheral"
        error = DisconnectedError(f"{address} disconnected before the session became active")
    return replace(snapshot, state=SessionState.DISCONNECTED, error=error), (CancelOutstanding(), Finish(error))


def transition(snapshot: Snapshot, event: Event, policy: SessionPolicy) -> Outcome:
    """Apply ``event`` to ``snapshot``. Events with no transition from the current state are ignored."""
    if isinstance(event, StopRequested):
        return _stop(snapshot)
    if isinstance(event, PeripheralLost):
        return _lost(snapshot)
    if isinstance(event, SessionFailed):
        return _failed(snapshot, event.error)
    handler = _TRANSITIONS.get((snapshot.state, type(event)))
    if handler is None:
        return snapshot, ()
    return handler(snapshot, event, policy)
