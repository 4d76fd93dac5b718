"""
Action bus and async command dispatcher.

The reducer never calls mise itself. It appends ``Command`` objects to its
outbox; the runtime hands each one to ``Dispatcher.dispatch``, which starts an
asyncio task that runs the gateway method in a worker thread and posts
exactly one Action back on the ``ActionBus``:

  - ``command.on_success(result)`` when the call returned, or
  - ``OperationFailed(message, command.domain)`` when it raised, unless the
    command supplies its own ``on_failure``.

Tasks are independent: there is no retry, no ordering between them and no
cancellation. The dispatcher holds a reference to every live task until it
finishes so the event loop cannot garbage-collect it mid-flight.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Set, Tuple

from .actions import Action, OperationFailed
from .errors import MiseError
from .model import Domain

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Command:
    """A request to run ``gateway.<operation>(*args)`` in the background."""
    operation: str
    args: Tuple[Any, ...]
    on_success: Callable[[Any], Action]
    domain: Optional[Domain] = None
    on_failure: Optional[Callable[[str], Action]] = None


class ActionBus:
    """Single ordered queue feeding the reducer."""

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[Action]" = asyncio.Queue()

    async def put(self, action: Action) -> None:
        await self._queue.put(action)

    def put_nowait(self, action: Action) -> None:
        self._queue.put_nowait(action)

    async def get(self) -> Action:
        return await self._queue.get()

    def empty(self) -> bool:
        return self._queue.empty()


class Dispatcher:
    def __init__(self, gateway: Any, bus: ActionBus) -> None:
        self.gateway = gateway
        self.bus = bus
        self._tasks: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def dispatch(self, command: Command) -> asyncio.Task:
        """Start ``command`` on the running loop and return its task."""
        task = asyncio.create_task(self._run(command), name=f"mise:{command.operation}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, command: Command) -> None:
        func = getattr(self.gateway, command.operation)
        try:
            result = await asyncio.to_thread(func, *command.args)
            action = command.on_success(result)
        except MiseError as e:
            action = self._failure(command, str(e))
        except Exception as e:
            logger.error(f"Unexpected error in {command.operation}: {e}", exc_info=True)
            action = self._failure(command, f"{command.operation}: {e}")
        await self.bus.put(action)

    @staticmethod
    def _failure(command: Command, message: str) -> Action:
        if command.on_failure is not None:
            return command.on_failure(message)
        return OperationFailed(message, command.domain)

    async def join(self) -> None:
        """Wait until every task dispatched so far has posted its action."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
