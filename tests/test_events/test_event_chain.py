"""
Test suite for EventChain execution engine.
Tests: 1) Event execution order 2) Early break keeps the chain running 3) Errors surface to the consumer
"""
import asyncio

import pytest
from pydantic import BaseModel, ConfigDict

from bsc_gasless.engine.events import EventBus, Dependencies, BaseEvent, BreakEvent
from bsc_gasless.engine.executors import EventChain


class StartEvent(BaseModel, BaseEvent):
    label: str = "start"

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"StartEvent({self.label})"


class SubmittedEvent(BaseModel, BaseEvent):
    tx_hash: str

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"SubmittedEvent({self.tx_hash})"


class ConfirmedEvent(BaseModel, BaseEvent):
    tx_hash: str

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"ConfirmedEvent({self.tx_hash})"


async def handle_start(event: StartEvent, deps: Dependencies):
    return SubmittedEvent(tx_hash="0xabc")


async def handle_submitted(event: SubmittedEvent, deps: Dependencies):
    await asyncio.sleep(0.05)
    return ConfirmedEvent(tx_hash=event.tx_hash)


def build_bus() -> EventBus:
    event_bus = EventBus()
    event_bus.subscribe(StartEvent, handle_start)
    event_bus.subscribe(SubmittedEvent, handle_submitted)
    return event_bus


@pytest.mark.asyncio
async def test_events_yielded_in_order():
    chain = EventChain(build_bus(), Dependencies())

    events = [event async for event in chain.execute(StartEvent())]

    assert [type(e) for e in events] == [SubmittedEvent, ConfirmedEvent]
    assert events[1].tx_hash == "0xabc"


@pytest.mark.asyncio
async def test_early_break_keeps_processing_in_background():
    confirmed = asyncio.Event()
    event_bus = build_bus()

    async def on_confirmed(event: ConfirmedEvent, deps: Dependencies):
        confirmed.set()

    event_bus.subscribe(ConfirmedEvent, on_confirmed)
    chain = EventChain(event_bus, Dependencies())

    async for event in chain.execute(StartEvent()):
        if isinstance(event, SubmittedEvent):
            break

    assert not confirmed.is_set()
    await asyncio.wait_for(confirmed.wait(), timeout=1.0)


@pytest.mark.asyncio
async def test_break_event_stops_chain():
    event_bus = EventBus()
    reached = []

    async def stop(event: StartEvent, deps: Dependencies):
        return BreakEvent(break_reason="done")

    async def after_break(event: BreakEvent, deps: Dependencies):
        reached.append(event)
        return SubmittedEvent(tx_hash="0xdead")

    event_bus.subscribe(StartEvent, stop)
    event_bus.subscribe(BreakEvent, after_break)
    chain = EventChain(event_bus, Dependencies())

    events = [event async for event in chain.execute(StartEvent())]

    assert [type(e) for e in events] == [BreakEvent]
    assert reached == []


@pytest.mark.asyncio
async def test_handler_exception_is_reraised():
    event_bus = EventBus()

    async def explode(event: StartEvent, deps: Dependencies):
        raise RuntimeError("handler failed")

    event_bus.subscribe(StartEvent, explode)
    chain = EventChain(event_bus, Dependencies())

    with pytest.raises(RuntimeError, match="handler failed"):
        async for _ in chain.execute(StartEvent()):
            pass


@pytest.mark.asyncio
async def test_unsupported_return_type_is_rejected():
    event_bus = EventBus()

    async def wrong(event: StartEvent, deps: Dependencies):
        return "not an event"

    event_bus.subscribe(StartEvent, wrong)
    chain = EventChain(event_bus, Dependencies())

    with pytest.raises(TypeError):
        async for _ in chain.execute(StartEvent()):
            pass


@pytest.mark.asyncio
async def test_hooks_run_before_subscribers():
    calls = []
    event_bus = EventBus()

    async def hook(event: StartEvent, deps: Dependencies):
        calls.append("hook")

    async def handler(event: StartEvent, deps: Dependencies):
        calls.append("handler")

    event_bus.hook(StartEvent, hook)
    event_bus.subscribe(StartEvent, handler)

    events = [event async for event in EventChain(event_bus, Dependencies()).execute(StartEvent())]

    assert events == []
    assert calls == ["hook", "handler"]


def test_sync_handlers_are_rejected():
    event_bus = EventBus()

    def sync_handler(event, deps):
        return None

    with pytest.raises(TypeError):
        event_bus.subscribe(StartEvent, sync_handler)
    with pytest.raises(TypeError):
        event_bus.hook(StartEvent, sync_handler)
