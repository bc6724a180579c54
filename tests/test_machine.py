from __future__ import annotations

from dataclasses import replace

from fusectl.core.errors import DisconnectedError, IncompatibleDeviceError, TransportConnectError
from fusectl.core.machine import (
    AdvertisementSeen,
    CancelOutstanding,
    Connect,
    ConnectFailed,
    ConnectStarted,
    ConnectSucceeded,
    Disconnect,
    DisconnectComplete,
    Enqueue,
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
    WorkComplete,
    transition,
)
from fusectl.core.model import Advertisement, DeviceIdentity
from fusectl.transports.base import PowerState

POLICY = SessionPolicy(identity=DeviceIdentity("AA:BB"))
TARGET = Advertisement(address="aa:bb", name="FUSE")


def _at(state: SessionState, **fields) -> Snapshot:
    return replace(Snapshot(), state=state, **fields)


def test_power_on_starts_scanning() -> None:
    snapshot, effects = transition(Snapshot(), PowerChanged(PowerState.POWERED_ON), POLICY)
    assert snapshot.state is SessionState.SCANNING
    assert effects == (StartScan(),)


def test_power_states_other_than_on_keep_idle() -> None:
    for power in (PowerState.UNKNOWN, PowerState.POWERED_OFF, PowerState.UNAUTHORIZED):
        snapshot, effects = transition(Snapshot(), PowerChanged(power), POLICY)
        assert snapshot.state is SessionState.IDLE
        assert effects == ()


def test_power_off_while_scanning_stops_scan() -> None:
    snapshot, effects = transition(_at(SessionState.SCANNING), PowerChanged(PowerState.POWERED_OFF), POLICY)
    assert snapshot.state is SessionState.IDLE
    assert effects == (StopScan(),)


def test_matching_advertisement_is_case_insensitive() -> None:
    snapshot, effects = transition(_at(SessionState.SCANNING), AdvertisementSeen(TARGET), POLICY)
    assert snapshot.state is SessionState.DISCOVERED
    assert snapshot.peripheral == TARGET
    assert effects == (StopScan(), Enqueue(ConnectStarted()))


def test_non_matching_advertisement_is_ignored() -> None:
    other = Advertisement(address="11:22")
    snapshot, effects = transition(_at(SessionState.SCANNING), AdvertisementSeen(other), POLICY)
    assert snapshot.state is SessionState.SCANNING
    assert effects == ()


def test_connect_started_counts_attempt() -> None:
    snapshot, effects = transition(_at(SessionState.DISCOVERED, peripheral=TARGET), ConnectStarted(), POLICY)
    assert snapshot.state is SessionState.CONNECTING
    assert snapshot.attempts == 1
    assert effects == (Connect(TARGET),)


def test_connect_success_resolves_services() -> None:
    snapshot, effects = transition(_at(SessionState.CONNECTING, peripheral=TARGET), ConnectSucceeded(), POLICY)
    assert snapshot.state is SessionState.CONNECTED
    assert effects == (ResolveServices(),)


def test_connect_failure_finishes_when_attempts_exhausted() -> None:
    error = TransportConnectError("refused")
    start = _at(SessionState.CONNECTING, peripheral=TARGET, attempts=1)
    snapshot, effects = transition(start, ConnectFailed(error), POLICY)
    assert snapshot.state is SessionState.DISCONNECTED
    assert snapshot.error is error
    assert effects == (Finish(error),)


def test_connect_failure_rescans_while_attempts_remain() -> None:
    policy = replace(POLICY, connect_attempts=3)
    start = _at(SessionState.CONNECTING, peripheral=TARGET, attempts=1)
    snapshot, effects = transition(start, ConnectFailed(TransportConnectError("refused")), policy)
    assert snapshot.state is SessionState.SCANNING
    assert snapshot.peripheral is None
    assert snapshot.attempts == 1
    assert effects == (StartScan(),)


def test_services_resolved_starts_exchange() -> None:
    snapshot, effects = transition(_at(SessionState.CONNECTED), ServicesResolved(()), POLICY)
    assert snapshot.state is SessionState.SERVICES_RESOLVED
    assert effects == (StartExchange(()),)


def test_exchange_ready_activates_and_oneshot_enqueues_work_complete() -> None:
    snapshot, effects = transition(_at(SessionState.SERVICES_RESOLVED), ExchangeReady(), POLICY)
    assert snapshot.state is SessionState.ACTIVE
    assert effects == ()

    oneshot = replace(POLICY, oneshot=True)
    snapshot, effects = transition(_at(SessionState.SERVICES_RESOLVED), ExchangeReady(), oneshot)
    assert snapshot.state is SessionState.ACTIVE
    assert effects == (Enqueue(WorkComplete()),)


def test_work_complete_disconnects() -> None:
    snapshot, effects = transition(_at(SessionState.ACTIVE), WorkComplete(), POLICY)
    assert snapshot.state is SessionState.DISCONNECTING
    assert effects == (Disconnect(),)


def test_payload_routed_while_linked() -> None:
    for state in (SessionState.SERVICES_RESOLVED, SessionState.ACTIVE):
        snapshot, effects = transition(_at(state), PayloadReceived("2a19", b"\x50", subscribed=False), POLICY)
        assert snapshot.state is state
        assert effects == (Route("2a19", b"\x50", False),)


def test_payload_after_disconnecting_is_dropped() -> None:
    snapshot, effects = transition(_at(SessionState.DISCONNECTING), PayloadReceived("2a19", b"\x50"), POLICY)
    assert snapshot.state is SessionState.DISCONNECTING
    assert effects == ()


def test_disconnect_complete_finishes_with_recorded_error() -> None:
    error = IncompatibleDeviceError("no battery", service="battery")
    snapshot, effects = transition(_at(SessionState.DISCONNECTING, error=error), DisconnectComplete(), POLICY)
    assert snapshot.state is SessionState.DISCONNECTED
    assert effects == (Finish(error),)


def test_stop_from_idle_and_scanning() -> None:
    snapshot, effects = transition(Snapshot(), StopRequested(), POLICY)
    assert snapshot.state is SessionState.DISCONNECTED
    assert effects == (Finish(None),)

    snapshot, effects = transition(_at(SessionState.SCANNING), StopRequested(), POLICY)
    assert snapshot.state is SessionState.DISCONNECTED
    assert effects == (StopScan(), Finish(None))


def test_stop_while_linked_cancels_and_disconnects() -> None:
    for state in (SessionState.CONNECTING, SessionState.CONNECTED, SessionState.ACTIVE):
        snapshot, effects = transition(_at(state), StopRequested(), POLICY)
        assert snapshot.state is SessionState.DISCONNECTING
        assert effects == (CancelOutstanding(), Disconnect())


def test_stop_is_a_no_op_once_disconnecting() -> None:
    for state in (SessionState.DISCONNECTING, SessionState.DISCONNECTED):
        snapshot, effects = transition(_at(state), StopRequested(), POLICY)
        assert snapshot.state is state
        assert effects == ()


def test_session_failure_while_linked_records_error_and_disconnects() -> None:
    error = IncompatibleDeviceError("no battery")
    snapshot, effects = transition(_at(SessionState.CONNECTED), SessionFailed(error), POLICY)
    assert snapshot.state is SessionState.DISCONNECTING
    assert snapshot.error is error
    assert effects == (CancelOutstanding(), Disconnect())


def test_session_failure_keeps_first_error() -> None:
    first = IncompatibleDeviceError("first")
    snapshot, effects = transition(
        _at(SessionState.DISCONNECTING, error=first), SessionFailed(IncompatibleDeviceError("second")), POLICY
    )
    assert snapshot.error is first
    assert effects == ()


def test_link_loss_while_active_ends_normally() -> None:
    snapshot, effects = transition(_at(SessionState.ACTIVE, peripheral=TARGET), PeripheralLost(), POLICY)
    assert snapshot.state is SessionState.DISCONNECTED
    assert snapshot.error is None
    assert effects == (CancelOutstanding(), Finish(None))


def test_link_loss_before_active_is_an_error() -> None:
    snapshot, effects = transition(_at(SessionState.SERVICES_RESOLVED, peripheral=TARGET), PeripheralLost(), POLICY)
    assert snapshot.state is SessionState.DISCONNECTED
    assert isinstance(snapshot.error, DisconnectedError)
    assert "aa:bb" in str(snapshot.error)
    assert effects == (CancelOutstanding(), Finish(snapshot.error))


def test_link_loss_when_not_linked_is_ignored() -> None:
    for state in (SessionState.IDLE, SessionState.SCANNING, SessionState.DISCONNECTED):
        snapshot, effects = transition(_at(state), PeripheralLost(), POLICY)
        assert snapshot.state is state
        assert effects == ()


def test_out_of_order_events_are_ignored() -> None:
    start = _at(SessionState.SCANNING)
    for event in (ConnectSucceeded(), ServicesResolved(()), ExchangeReady(), WorkComplete(), DisconnectComplete()):
        snapshot, effects = transition(start, event, POLICY)
        assert snapshot is start
        assert effects == ()
