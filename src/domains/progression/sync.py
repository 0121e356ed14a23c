"""Propagation of committed assignments between coach and client sessions.

Two transports carry the same contract, ``publish`` after every commit and
``subscribe`` from every session that displays an assignment:

* ``PollingTransport`` keeps the latest document per client in the shared
  key-value store and readers poll it.
* ``PushTransport`` sends each document on a per-assignment change feed.

Delivery is at-least-once and out of order. Every subscription owns an
``AssignmentReplica`` that drops anything not newer than what it has seen.
"""
import asyncio
import inspect
import json
import uuid
from typing import Any, Awaitable, Callable

import structlog
from redis.exceptions import RedisError

from src.config.database import session_scope
from src.config.settings import Settings, settings
from src.core.observability import capture_exception
from src.core.redis import cache_get, cache_set_if, open_channel, publish_message
from src.domains.progression.exceptions import TransportUnavailable
from src.domains.progression.schemas import ClientWorkoutAssignment
from src.domains.progression.store import ProgressionStateStore

logger = structlog.get_logger(__name__)

UpdateCallback = Callable[[ClientWorkoutAssignment], Any]
AssignmentResolver = Callable[[str], Awaitable[ClientWorkoutAssignment | None]]

_BACKEND_ERRORS = (RedisError, ConnectionError)


class AssignmentReplica:
    """Local view of an assignment fed by a transport.

    Versions are tracked per assignment id, so a freshly created assignment
    (version 0) is accepted after its predecessor.
    """

    def __init__(self):
        self._versions: dict[uuid.UUID, int] = {}
        self.latest: ClientWorkoutAssignment | None = None

    def last_seen(self, assignment_id: uuid.UUID) -> int | None:
        return self._versions.get(assignment_id)

    def accept(self, assignment: ClientWorkoutAssignment) -> bool:
        """Record an inbound document. Returns False if it is not newer."""
        seen = self._versions.get(assignment.id)
        if seen is not None and assignment.version <= seen:
            return False
        self._versions[assignment.id] = assignment.version
        self.latest = assignment
        return True


class Subscription:
    """Handle of a running subscription."""

    def __init__(self, client_id: str, replica: AssignmentReplica):
        self.client_id = client_id
        self.replica = replica
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    def _start(self, coro) -> None:
        self._task = asyncio.create_task(coro)

    @property
    def stop_event(self) -> asyncio.Event:
        return self._stop_event

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def unsubscribe(self) -> None:
        """Stop delivering updates. Safe to call more than once."""
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.unsubscribe()


async def _wait(stop_event: asyncio.Event, timeout: float) -> bool:
    """Sleep up to ``timeout``; returns True if the stop event fired."""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        return False


class SyncTransport:
    """Base class of the synchronization channel."""

    name = "base"

    def __init__(self):
        self._subscriptions: set[Subscription] = set()

    async def publish(self, assignment: ClientWorkoutAssignment) -> None:
        raise NotImplementedError

    async def subscribe(self, client_id: str, on_update: UpdateCallback) -> Subscription:
        """Start delivering the client's assignment to ``on_update``.

        ``on_update`` may be a plain function or a coroutine function. It is
        only called with documents newer than the last one it received.
        """
        replica = AssignmentReplica()

        async def deliver(assignment: ClientWorkoutAssignment) -> None:
            if not replica.accept(assignment):
                logger.debug(
                    "sync_update_discarded",
                    transport=self.name,
                    client_id=client_id,
                    version=assignment.version,
                )
                return
            result = on_update(assignment)
            if inspect.isawaitable(result):
                await result

        subscription = Subscription(client_id, replica)
        subscription._start(self._run(client_id, deliver, subscription.stop_event))
        self._subscriptions.add(subscription)
        subscription._task.add_done_callback(lambda _: self._subscriptions.discard(subscription))
        logger.info("sync_subscribed", transport=self.name, client_id=client_id)
        return subscription

    async def _run(self, client_id: str, deliver, stop_event: asyncio.Event) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        """Stop every subscription opened through this transport."""
        subscriptions = list(self._subscriptions)
        self._subscriptions.clear()
        for subscription in subscriptions:
            await subscription.unsubscribe()


class PollingTransport(SyncTransport):
    """Shared key-value slot per client, read on an interval.

    Readers in the same process are woken early when a write lands, so a
    local publish is visible without waiting for the next tick.
    """

    name = "polling"

    def __init__(
        self,
        interval: float = 2.0,
        key_prefix: str = "assignment_sync:",
        ttl_seconds: int | None = None,
    ):
        super().__init__()
        self.interval = interval
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds
        self._signals: dict[str, set[asyncio.Event]] = {}

    def _key(self, client_id: str) -> str:
        return f"{self.key_prefix}{client_id}"

    async def read(self, client_id: str) -> tuple[ClientWorkoutAssignment | None, int | None]:
        """Current slot content as ``(assignment, version)``."""
        try:
            raw = await cache_get(self._key(client_id))
        except _BACKEND_ERRORS as e:
            raise TransportUnavailable(str(e)) from e
        if not raw:
            return None, None

        payload = json.loads(raw)
        assignment = ClientWorkoutAssignment.model_validate(payload["assignment"])
        return assignment, payload.get("version", assignment.version)

    async def publish(self, assignment: ClientWorkoutAssignment) -> None:
        client_id = assignment.client_id

        def supersedes(raw: str | None) -> bool:
            if not raw:
                return True
            stored = json.loads(raw)
            document = stored["assignment"]
            if document["id"] == str(assignment.id):
                return assignment.version > stored.get("version", document["version"])
            # A deactivated assignment never hides its active successor
            return assignment.is_active or not document.get("is_active", True)

        payload = json.dumps(
            {
                "assignment": assignment.model_dump(mode="json"),
                "version": assignment.version,
            }
        )
        try:
            written = await cache_set_if(
                self._key(client_id),
                payload,
                supersedes,
                expire_seconds=self.ttl_seconds,
            )
        except _BACKEND_ERRORS as e:
            raise TransportUnavailable(str(e)) from e

        if not written:
            logger.debug(
                "sync_publish_skipped",
                client_id=client_id,
                assignment_id=str(assignment.id),
                version=assignment.version,
            )
            return

        for signal in self._signals.get(client_id, ()):
            signal.set()
        logger.debug("sync_published", transport=self.name, client_id=client_id, version=assignment.version)

    async def _run(self, client_id: str, deliver, stop_event: asyncio.Event) -> None:
        wake = asyncio.Event()
        self._signals.setdefault(client_id, set()).add(wake)
        try:
            while not stop_event.is_set():
                wake.clear()
                try:
                    assignment, _ = await self.read(client_id)
                    if assignment is not None:
                        await deliver(assignment)
                except TransportUnavailable as e:
                    logger.warning("sync_poll_unavailable", client_id=client_id, error=str(e))
                except Exception as e:
                    logger.error("sync_poll_error", client_id=client_id, error=str(e))
                    capture_exception(e, tags={"component": "sync_polling"})

                try:
                    await asyncio.wait_for(wake.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            signals = self._signals.get(client_id)
            if signals is not None:
                signals.discard(wake)
                if not signals:
                    del self._signals[client_id]


class PushTransport(SyncTransport):
    """Change feed per assignment id.

    A subscriber resolves the client's active assignment, listens on its
    channel and resolves again once that assignment is deactivated.
    """

    name = "push"

    def __init__(
        self,
        resolver: AssignmentResolver,
        channel_prefix: str = "assignment_changes:",
        resolve_interval: float = 2.0,
        receive_timeout: float = 1.0,
    ):
        super().__init__()
        self.resolver = resolver
        self.channel_prefix = channel_prefix
        self.resolve_interval = resolve_interval
        self.receive_timeout = receive_timeout

    def _channel(self, assignment_id: uuid.UUID) -> str:
        return f"{self.channel_prefix}{assignment_id}"

    async def publish(self, assignment: ClientWorkoutAssignment) -> None:
        channel = self._channel(assignment.id)
        try:
            delivered = await publish_message(channel, assignment.model_dump_json())
        except _BACKEND_ERRORS as e:
            raise TransportUnavailable(str(e)) from e
        logger.debug(
            "sync_published",
            transport=self.name,
            channel=channel,
            version=assignment.version,
            subscribers=delivered,
        )

    async def _run(self, client_id: str, deliver, stop_event: asyncio.Event) -> None:
        listener = None
        try:
            while not stop_event.is_set():
                try:
                    if listener is None:
                        resolved = await self.resolver(client_id)
                        if resolved is None:
                            await _wait(stop_event, self.resolve_interval)
                            continue

                        listener = await open_channel(self._channel(resolved.id))
                        # Read again now that the channel is open so no commit is lost in between
                        current = await self.resolver(client_id)
                        if current is not None and current.id != resolved.id:
                            await listener.close()
                            listener = None
                            continue
                        await deliver(current or resolved)
                        continue

                    payload = await listener.get(timeout=self.receive_timeout)
                    if payload is None:
                        continue

                    assignment = ClientWorkoutAssignment.model_validate_json(payload)
                    await deliver(assignment)
                    if not assignment.is_active:
                        logger.info(
                            "sync_assignment_deactivated",
                            client_id=client_id,
                            assignment_id=str(assignment.id),
                        )
                        await listener.close()
                        listener = None
                except _BACKEND_ERRORS as e:
                    logger.warning("sync_feed_unavailable", client_id=client_id, error=str(e))
                    if listener is not None:
                        await listener.close()
                        listener = None
                    await _wait(stop_event, self.resolve_interval)
                except Exception as e:
                    logger.error("sync_feed_error", client_id=client_id, error=str(e))
                    capture_exception(e, tags={"component": "sync_push"})
                    await _wait(stop_event, self.resolve_interval)
        finally:
            if listener is not None:
                await listener.close()


async def load_active_assignment(client_id: str) -> ClientWorkoutAssignment | None:
    """Resolve a client's active assignment with a short-lived session."""
    async with session_scope() as db:
        return await ProgressionStateStore(db).load(client_id)


def build_sync_channel(
    config: Settings,
    resolver: AssignmentResolver | None = None,
) -> SyncTransport:
    """Create the transport selected by ``SYNC_TRANSPORT``."""
    if config.SYNC_TRANSPORT == "push":
        return PushTransport(
            resolver or load_active_assignment,
            channel_prefix=config.SYNC_CHANNEL_PREFIX,
            resolve_interval=config.SYNC_POLL_INTERVAL_SECONDS,
        )
    return PollingTransport(
        interval=config.SYNC_POLL_INTERVAL_SECONDS,
        key_prefix=config.SYNC_KEY_PREFIX,
        ttl_seconds=config.SYNC_KEY_TTL_SECONDS,
    )


_channel: SyncTransport | None = None


def get_sync_channel() -> SyncTransport:
    """Process-wide synchronization channel."""
    global _channel
    if _channel is None:
        _channel = build_sync_channel(settings)
        logger.info("sync_channel_created", transport=_channel.name)
    return _channel


async def close_sync_channel() -> None:
    global _channel
    if _channel is not None:
        await _channel.close()
        _channel = None
