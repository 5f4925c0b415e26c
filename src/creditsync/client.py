"""High-level async client keeping a replica of the user's subscription record."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import aiohttp

from creditsync._sync.debit import CreditDebit
from creditsync._sync.initializer import InitializationSequencer
from creditsync._sync.listener import ChangeFeedListener
from creditsync._transport import RestTransport
from creditsync.access import AccessState, resolve_access
from creditsync.config import SyncConfig
from creditsync.exceptions import CreditSyncError, NotInitializedError, SubscriptionSetupError
from creditsync.gateway.base import FeedHandle, RecordGateway
from creditsync.gateway.feed import MqttChangeFeed
from creditsync.gateway.rest import HttpRecordGateway
from creditsync.ingestion.records import build_record_update
from creditsync.models.debit import DebitOutcome, Notice, NoticeVariant
from creditsync.models.record import PreferredLanguage
from creditsync.models.replica import LifecyclePhase, LocalReplica
from creditsync.publisher import SnapshotCell, shared_cell
from creditsync.state.events import UpdateSource
from creditsync.state.store import ReplicaStore

_logger = logging.getLogger(__name__)

ActionSignalRegistrar = Callable[[Callable[[], None]], Callable[[], None]]


class CreditSyncClient:
    """Async client for the subscription/credit record of one signed-in user.

    Usage::

        async with CreditSyncClient(config) as client:
            await client.start(user_id)
            replica = client.get_replica()

    The client is the lifecycle controller: it owns the change-feed
    subscription of the current identity, runs the initial read, debits
    credits for billable actions and mirrors every replica change into the
    process-wide :mod:`creditsync.publisher` cell.
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        gateway: RecordGateway | None = None,
        session: aiohttp.ClientSession | None = None,
        on_notice: Callable[[Notice], None] | None = None,
        cell: SnapshotCell | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._owns_gateway = gateway is None
        self._gateway: RecordGateway | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._on_notice = on_notice
        self._cell = cell if cell is not None else shared_cell()

        self._store = ReplicaStore(
            defaults=LocalReplica(
                credits=config.trial_credits,
                preferred_language=config.default_language,
            ),
            version_check=config.version_check,
        )
        # The cell is shared; it is first written when a session begins.
        self._store.add_listener(self._cell.publish_replica)

        self._listener: ChangeFeedListener | None = None
        self._initializer: InitializationSequencer | None = None
        self._debit: CreditDebit | None = None

        self._lock = asyncio.Lock()
        self._ready = asyncio.Event()
        self._generation = 0
        self._init_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._detach_signals: list[Callable[[], None]] = []

        if gateway is not None:
            self._bind_gateway(gateway)

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> CreditSyncClient:
        self._loop = asyncio.get_running_loop()
        if self._gateway is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            feed = MqttChangeFeed(self._config, loop=self._loop) if self._config.mqtt_enabled else None
            transport = RestTransport(self._config, self._http_session)
            self._bind_gateway(HttpRecordGateway(self._config, transport, feed=feed))
        return self

    async def __aexit__(self, *exc: Any) -> None:
        for detach in self._detach_signals:
            try:
                detach()
            except Exception:
                _logger.debug("Detaching action signal failed", exc_info=True)
        self._detach_signals.clear()

        await self.teardown()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        gateway = self._gateway
        if self._owns_gateway and isinstance(gateway, HttpRecordGateway):
            await gateway.close()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._loop = None

    def _bind_gateway(self, gateway: RecordGateway) -> None:
        self._gateway = gateway
        self._listener = ChangeFeedListener(gateway=gateway, store=self._store)
        self._initializer = InitializationSequencer(gateway=gateway, store=self._store)
        self._debit = CreditDebit(config=self._config, gateway=gateway, store=self._store)

    # ------------------------------------------------------------------
    # Read side (synchronous)
    # ------------------------------------------------------------------

    @property
    def identity(self) -> str | None:
        return self._store.identity

    @property
    def phase(self) -> LifecyclePhase:
        return self._store.phase

    @property
    def is_ready(self) -> bool:
        return self._store.phase == LifecyclePhase.READY

    @property
    def live_subscription_identity(self) -> str | None:
        """Identity of the open change-feed subscription, if any."""
        listener = self._listener
        if listener is None or not listener.is_open or listener.handle is None:
            return None
        return listener.handle.identity

    def get_replica(self) -> LocalReplica:
        """Current replica; never blocks."""
        return self._store.replica

    def access_state(self) -> AccessState:
        return resolve_access(self._store.identity, self._store.phase, self._store.replica)

    async def wait_until_ready(self, timeout: float | None = None) -> LocalReplica:
        """Wait until the current session finished its initial read.

        Raises :class:`TimeoutError` when *timeout* elapses first.
        """
        await asyncio.wait_for(self._ready.wait(), timeout)
        return self._store.replica

    # ------------------------------------------------------------------
    # Identity session lifecycle
    # ------------------------------------------------------------------

    def _require_components(self) -> tuple[ChangeFeedListener, InitializationSequencer, CreditDebit]:
        if self._listener is None or self._initializer is None or self._debit is None:
            raise CreditSyncError("Client not initialized. Use 'async with CreditSyncClient(...) as client:'")
        return self._listener, self._initializer, self._debit

    def _session_guard(self) -> Callable[[], bool]:
        generation = self._generation
        identity = self._store.identity

        def _is_current() -> bool:
            return self._generation == generation and self._store.identity == identity

        return _is_current

    async def start(self, identity: str) -> LocalReplica:
        """Begin (or keep) the session of *identity*.

        Any other identity's session is torn down first.  A concurrent call
        for the same identity joins the initialization already in flight.
        Initialization errors propagate with the replica left uninitialized;
        call :meth:`initialize` to retry.  When a teardown or an identity
        switch supersedes the call, the current replica is returned.
        """
        identity = identity.strip()
        if not identity:
            raise ValueError("identity must be non-empty")
        self._require_components()
        async with self._lock:
            if self._store.identity == identity and self._store.phase == LifecyclePhase.READY:
                return self._store.replica
            task = self._init_task
            joined = (
                task is not None
                and not task.done()
                and self._store.identity == identity
                and self._store.phase == LifecyclePhase.INITIALIZING
            )
            if not joined:
                if self._store.identity is not None and self._store.identity != identity:
                    await self._teardown_locked()
                if task is not None and not task.done():
                    # A failed or cancelled attempt still releasing its subscription.
                    await asyncio.wait([task])
                if self._store.identity is None:
                    self._store.begin_session(identity)
                    self._cell.publish_replica(self._store.replica)
                else:
                    self._store.retry_initialization()
                self._generation += 1
                task = asyncio.ensure_future(self._initialize(identity, self._session_guard()))
                self._init_task = task
                self._tasks.add(task)
                task.add_done_callback(self._init_done)
        assert task is not None  # noqa: S101
        try:
            # Cancelling the caller that started initialization cancels it too.
            await (asyncio.shield(task) if joined else task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            _logger.debug("Initialization of identity=%s was superseded", identity)
        return self._store.replica

    async def initialize(self) -> LocalReplica:
        """Retry initialization of the current identity after a failure."""
        identity = self._store.identity
        if identity is None:
            raise NotInitializedError("No identity session to initialize")
        return await self.start(identity)

    async def switch_identity(self, identity: str | None) -> LocalReplica:
        """Follow an auth state change; ``None`` means signed out."""
        if identity is None:
            await self.teardown()
            return self._store.replica
        return await self.start(identity)

    async def teardown(self) -> None:
        """End the current session: unsubscribe and reset the replica.

        An initialization in flight is cancelled, not awaited.
        """
        async with self._lock:
            await self._teardown_locked()

    async def _initialize(self, identity: str, is_current: Callable[[], bool]) -> None:
        listener, initializer, _debit = self._require_components()
        handle: FeedHandle | None = None
        try:
            try:
                handle = await listener.open(identity)
            except SubscriptionSetupError:
                _logger.warning("Change feed setup failed for identity=%s", identity, exc_info=True)
                raise
            try:
                initialized = await initializer.run(identity, is_current)
            except Exception:
                _logger.warning("Initial read failed for identity=%s", identity, exc_info=True)
                raise
        except BaseException:
            # Failed or cancelled: leave nothing open and the replica retryable.
            if is_current():
                self._store.abort_initialization()
            if handle is not None:
                await listener.close(handle)
            raise
        if not initialized:
            await listener.close(handle)
            return
        replayed = listener.flush_pending()
        if replayed:
            _logger.debug("Replayed %d change(s) received during initialization", replayed)
        self._ready.set()

    def _init_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if self._init_task is task:
            self._init_task = None

    async def _teardown_locked(self) -> None:
        self._generation += 1
        self._ready.clear()
        task = self._init_task
        if task is not None and not task.done():
            task.cancel()
        if self._listener is not None:
            await self._listener.close()
        identity = self._store.identity
        self._store.end_session()
        if identity is not None:
            _logger.debug("Tore down session identity=%s", identity)

    # ------------------------------------------------------------------
    # Billable actions
    # ------------------------------------------------------------------

    async def on_billable_action_completed(self) -> DebitOutcome:
        """Debit one credit for a completed billable action.

        Returns :attr:`DebitOutcome.SKIPPED` without touching the gateway
        while the replica is not initialized.  Gateway errors are logged,
        reported as an error notice and re-raised.
        """
        _listener, _initializer, debit = self._require_components()
        try:
            outcome = await debit.run(self._session_guard())
        except CreditSyncError as exc:
            _logger.warning("Credit debit failed: %s", exc)
            self._notify(
                Notice(
                    title="Credits not updated",
                    description="Your last action could not be billed. Credits will refresh shortly.",
                    variant=NoticeVariant.ERROR,
                )
            )
            raise
        if outcome == DebitOutcome.EXHAUSTED:
            self._notify(
                Notice(
                    title="Out of Credits",
                    description="You are out of credits. Please refill to continue.",
                    variant=NoticeVariant.ERROR,
                )
            )
        return outcome

    def signal_billable_action(self) -> None:
        """Thread-safe, fire-and-forget variant for host callbacks.

        Schedules one debit on the client's loop.  Failures are logged and
        never raised into the caller.
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            _logger.warning("Billable action signalled while the client is not running; ignored")
            return
        loop.call_soon_threadsafe(self._spawn_debit)

    def attach_action_signal(self, register: ActionSignalRegistrar) -> Callable[[], None]:
        """Subscribe to an external "action succeeded" event source.

        *register* receives the callback and returns its own unsubscribe
        function; the subscription is released when the client exits.
        """
        detach = register(self.signal_billable_action)
        self._detach_signals.append(detach)

        def _detach() -> None:
            if detach in self._detach_signals:
                self._detach_signals.remove(detach)
                detach()

        return _detach

    def _spawn_debit(self) -> None:
        task = asyncio.ensure_future(self.on_billable_action_completed())
        self._tasks.add(task)
        task.add_done_callback(self._debit_done)

    def _debit_done(self, task: asyncio.Task[DebitOutcome]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.error("Background credit debit failed", exc_info=exc)

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def set_preferred_language(self, value: PreferredLanguage | str) -> LocalReplica:
        """Persist the preferred language and apply it to the replica.

        The change feed echoes the same value afterwards, which re-applies
        as a no-op.
        """
        language = PreferredLanguage(value)
        self._require_components()
        gateway = self._gateway
        assert gateway is not None  # noqa: S101
        identity = self._store.identity
        if identity is None:
            raise NotInitializedError("Cannot set a language without a signed-in identity")

        is_current = self._session_guard()
        try:
            record = await gateway.update_record(identity, {"preferred_language": language})
        except CreditSyncError as exc:
            _logger.warning("Error updating language: %s", exc)
            self._notify(
                Notice(
                    title="Language not saved",
                    description=f"Could not switch to {language.label}. Please try again.",
                    variant=NoticeVariant.ERROR,
                )
            )
            raise
        if is_current():
            self._store.apply(build_record_update(identity, record, UpdateSource.LOCAL))
        return self._store.replica

    def _notify(self, notice: Notice) -> None:
        if self._on_notice is None:
            return
        try:
            self._on_notice(notice)
        except Exception:
            _logger.debug("on_notice callback failed", exc_info=True)
