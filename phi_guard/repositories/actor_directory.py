"""
Actor Directory

Repository interface for actor records plus the in-memory implementation
used by default and in tests. Implementations must serialize read-modify-write
cycles per actor through `locked()`.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from phi_guard.models.actor import Actor


class ActorDirectory(ABC):
    """Lookup and update of actor records"""

    @abstractmethod
    async def get(self, actor_id: str) -> Optional[Actor]:
        ...

    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[Actor]:
        ...

    @abstractmethod
    async def add(self, actor: Actor) -> Actor:
        ...

    @abstractmethod
    async def save(self, actor: Actor) -> Actor:
        """Replace the stored record for `actor.actor_id`"""

    @abstractmethod
    def locked(self, actor_id: str):
        """Async context manager serializing updates to one actor"""

    async def exists(self, actor_id: str) -> bool:
        return await self.get(actor_id) is not None


class InMemoryActorDirectory(ActorDirectory):
    """Actor directory held in process memory"""

    def __init__(self):
        self._actors: Dict[str, Actor] = {}
        self._email_index: Dict[str, str] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def get(self, actor_id: str) -> Optional[Actor]:
        actor = self._actors.get(actor_id)
        return actor.model_copy() if actor else None

    async def get_by_email(self, email: str) -> Optional[Actor]:
        actor_id = self._email_index.get(email.lower())
        if actor_id is None:
            return None
        return await self.get(actor_id)

    async def add(self, actor: Actor) -> Actor:
        email = actor.email.lower()
        if actor.actor_id in self._actors or email in self._email_index:
            raise ValueError("Actor already exists")
        self._actors[actor.actor_id] = actor.model_copy(update={"email": email})
        self._email_index[email] = actor.actor_id
        return await self.get(actor.actor_id)

    async def save(self, actor: Actor) -> Actor:
        if actor.actor_id not in self._actors:
            raise KeyError(actor.actor_id)
        self._actors[actor.actor_id] = actor.model_copy()
        return await self.get(actor.actor_id)

    @asynccontextmanager
    async def locked(self, actor_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(actor_id, asyncio.Lock())
        async with lock:
            yield
