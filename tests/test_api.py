from __future__ import annotations

import asyncio

from fakes import ADDRESS, FakeTransport

from fusectl import api


def test_public_start_and_stop() -> None:
    transport = FakeTransport()
    levels: list[int] = []

    async def scenario() -> api.SessionState:
        session = await api.start(ADDRESS.lower(), transport, plan=api.BATTERY_PLAN)
        session.on_battery_level(lambda level: levels.append(level.percent))
        await asyncio.wait_for(session.wait_for_state(api.SessionState.ACTIVE), 1)
        await api.stop(session)
        await api.stop(session)
        return session.state

    assert asyncio.run(scenario()) is api.SessionState.DISCONNECTED
    assert levels == [85]
    assert ("disconnect", ADDRESS) in transport.calls


def test_public_exports_resolve() -> None:
    for name in api.__all__:
        assert hasattr(api, name), name
