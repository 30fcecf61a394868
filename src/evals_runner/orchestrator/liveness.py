"""Redis-backed liveness: runner membership, run heartbeat and outcome pub/sub.

Keys per run:

- ``evals:{run_id}``: pub/sub channel for task outcome events.
- ``runners:{run_id}``: set of ``task-{task_id}:{host}`` members, expiring after
  the evals timeout unless refreshed by a new registration.
- ``heartbeat:{run_id}``: liveness key with a TTL equal to the timeout, renewed
  at half that interval while the orchestrator is alive.

External tooling detects a dead runner by key expiry, so every operation here
is best-effort except registration and publishing, whose errors belong to the
task that triggered them.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass

from redis.asyncio import Redis

from evals_runner.orchestrator.models import TaskOutcomeEvent

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


def get_pubsub_key(run_id: int) -> str:
    return f"evals:{run_id}"


def get_runners_key(run_id: int) -> str:
    return f"runners:{run_id}"


def get_heartbeat_key(run_id: int) -> str:
    return f"heartbeat:{run_id}"


def resolve_host_identity() -> str:
    """Container host name when set, else the current process id."""

    hostname = os.environ.get("HOSTNAME", "").strip()
    if hostname:
        return hostname
    return str(os.getpid())


def runner_member(task_id: int, host_identity: str) -> str:
    return f"task-{task_id}:{host_identity}"


class RedisClientFactory:
    """Owns the lazily created Redis client for one orchestration context."""

    def __init__(
        self,
        url: str,
        *,
        client_factory: Callable[[str], Redis] | None = None,
    ) -> None:
        self.url = url
        self._client_factory = client_factory or _default_client_factory
        self._client: Redis | None = None

    def get(self) -> Redis:
        if self._client is None:
            logger.debug("Creating Redis client for %s", self.url)
            self._client = self._client_factory(self.url)
        return self._client

    async def close(self) -> None:
        client = self._client
        self._client = None
        if client is None:
            return
        try:
            await client.aclose()
        except Exception as error:  # noqa: BLE001
            logger.error("redis error: %s", error)

    def reset(self) -> None:
        """Forget the cached client without closing it."""

        self._client = None


def _default_client_factory(url: str) -> Redis:
    return Redis.from_url(url, decode_responses=True)


@dataclass(slots=True)
class Heartbeat:
    """Handle for a running heartbeat renewal loop."""

    run_id: int
    key: str
    ttl_seconds: int
    task: asyncio.Task[None]

    @property
    def interval_seconds(self) -> float:
        return self.ttl_seconds / 2


class LivenessRegistry:
    """Runner registration, heartbeat and publish primitives for one run context."""

    def __init__(
        self,
        client: Redis,
        *,
        timeout_seconds: int,
        host_identity: str | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.host_identity = host_identity or resolve_host_identity()
        self._sleep = sleep

    async def register_runner(self, run_id: int, task_id: int) -> None:
        key = get_runners_key(run_id)
        await self.client.sadd(key, runner_member(task_id, self.host_identity))
        await self.client.expire(key, self.timeout_seconds)

    async def deregister_runner(self, run_id: int, task_id: int) -> None:
        try:
            await self.client.srem(
                get_runners_key(run_id),
                runner_member(task_id, self.host_identity),
            )
        except Exception as error:  # noqa: BLE001
            logger.error("redis.srem failed: %s", error)

    @asynccontextmanager
    async def registered(self, run_id: int, task_id: int) -> AsyncIterator[None]:
        """Keep the runner registered for the duration of the block."""

        try:
            await self.register_runner(run_id, task_id)
            yield
        finally:
            await self.deregister_runner(run_id, task_id)

    async def start_heartbeat(self, run_id: int, seconds: int | None = None) -> Heartbeat:
        ttl = seconds or self.timeout_seconds
        key = get_heartbeat_key(run_id)
        await self.client.setex(key, ttl, self.host_identity)
        task = asyncio.create_task(self._renew_loop(key, ttl), name=f"heartbeat-{run_id}")
        logger.debug("Heartbeat started: key=%s ttl=%ss", key, ttl)
        return Heartbeat(run_id=run_id, key=key, ttl_seconds=ttl, task=task)

    async def stop_heartbeat(self, run_id: int, heartbeat: Heartbeat | None) -> None:
        if heartbeat is not None:
            heartbeat.task.cancel()
            with suppress(asyncio.CancelledError):
                await heartbeat.task
        try:
            await self.client.delete(get_heartbeat_key(run_id))
        except Exception as error:  # noqa: BLE001
            logger.error("redis.del failed: %s", error)

    async def publish(self, run_id: int, event: TaskOutcomeEvent) -> None:
        await self.client.publish(get_pubsub_key(run_id), event.to_json())

    async def _renew_loop(self, key: str, ttl: int) -> None:
        interval = ttl / 2
        while True:
            await self._sleep(interval)
            try:
                await self.client.expire(key, ttl)
            except Exception as error:  # noqa: BLE001
                logger.error("heartbeat error: %s", error)
