from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Final

from shared.errors import AgentError, CommandSyntaxError

from .behavior.executor import BehaviorExecutor
from .commands import Command, Verb, parse_command

LOG: Final = logging.getLogger("dispatcher")

Narrate = Callable[[str], Awaitable[None]]


class CommandDispatcher:
    """Turns addressed chat lines into exactly one executor call each."""

    def __init__(self, name: str, executor: BehaviorExecutor, narrate: Narrate | None = None) -> None:
        self.name = name
        self.executor = executor
        self._narrate = narrate or executor.narrate
        self._tasks: set[asyncio.Task[None]] = set()
        self._routes: dict[Verb, Callable[[Command], Awaitable[object]]] = {
            Verb.HARVEST: lambda c: executor.harvest(c.amount or 0),
            Verb.PLATFORM: lambda c: executor.build(c.amount or 0, c.requester),
            Verb.COME: lambda c: executor.come(c.requester),
            Verb.FOLLOW: lambda c: executor.follow(c.requester),
            Verb.STOP_FOLLOW: lambda c: self._stop_follow(),
            Verb.THROW: lambda c: executor.deliver(c.requester, c.amount),
        }

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, sender: str, text: str) -> asyncio.Task[None] | None:
        """Handle a chat line on its own task so the chat callback never blocks."""
        if sender == self.name:
            return None
        task = asyncio.get_running_loop().create_task(self.handle(sender, text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def handle(self, sender: str, text: str) -> None:
        if sender == self.name:
            return
        try:
            command = parse_command(text, agent_name=self.name, sender=sender)
        except CommandSyntaxError as e:
            await self._narrate(str(e))
            return
        if command is None:
            return
        LOG.info("%s <- %s: %s %s", self.name, sender, command.verb.value, command.amount or "")
        try:
            await self._routes[command.verb](command)
        except AgentError as e:
            # already narrated at the behavior boundary
            LOG.info("%s %s ended: %s", self.name, command.verb.value, e)

    async def _stop_follow(self) -> None:
        if await self.executor.stop_follow():
            await self._narrate("Stopped following")
        else:
            await self._narrate("I'm not following anyone")

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
