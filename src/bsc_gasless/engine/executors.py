"""
Relay chain runner.

Feeds an initial event through the EventBus and keeps dispatching whatever
the handlers return until no handler produces a follow-up event.
"""

import asyncio
from typing import AsyncGenerator, Set

from .events import BaseEvent, BreakEvent, EventBus, Dependencies


class EventChain:
    """Runs one relay request by chaining handler results.

    The chain runs in its own task. A consumer may stop iterating early (for
    example once the transaction hash is known) while the remaining events,
    such as confirmation polling, keep processing in the background.
    """

    # Shared across instances: holds chains alive after their EventChain is dropped
    _background: Set[asyncio.Task] = set()

    def __init__(
        self,
        event_bus: EventBus,
        deps: Dependencies,
    ) -> None:
        """
        Args:
            event_bus: Bus holding the relay state handlers.
            deps: Shared collaborators handed to every handler.
        """
        self.event_bus = event_bus
        self.deps = deps

    async def execute(self, initial_event: BaseEvent) -> AsyncGenerator[BaseEvent, None]:
        """
        Run the chain from ``initial_event``.

        Yields:
            Every event produced by a handler, in production order.

        Raises:
            Exception: Whatever a handler raised; it is re-raised here rather
                than lost inside the background task.
        """
        queue: asyncio.Queue = asyncio.Queue()

        async def produce():
            try:
                async for produced in self._process_event(initial_event):
                    await queue.put(produced)
            except Exception as e:
                await queue.put(e)
            finally:
                await queue.put(None)  # end of chain

        task = asyncio.create_task(produce())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

        while True:
            item = await queue.get()
            if item is None:
                break
            if isinstance(item, Exception):
                raise item
            yield item

    async def _process_event(self, event: BaseEvent) -> AsyncGenerator[BaseEvent, None]:
        """Dispatch ``event`` and recurse into each event the handlers return."""
        if isinstance(event, BreakEvent):
            return

        async for result in self.event_bus.dispatch(event, self.deps):
            if result is None:
                continue
            if not isinstance(result, BaseEvent):
                raise TypeError(f"Handler returned {type(result).__name__}, expected an event or None")
            yield result
            async for follow_up in self._process_event(result):
                yield follow_up
