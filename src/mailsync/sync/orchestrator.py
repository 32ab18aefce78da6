"""Periodic polling and merge orchestration.

The orchestrator owns the sync state machine and drives each pass::

    IDLE --poll--> POLLING --fetched--> MERGING --merged--> IDLE
                      \\--fetch_failed--> IDLE     \\--merge_failed--> IDLE

Fetching runs in a worker thread (``asyncio.to_thread``) and is the only
suspension point of a pass.  Normalization and the store batch run
synchronously on the event loop, in fetch order, so store mutations are
never concurrent and observers are notified only after the batch commits.
At most one pass is in flight; ticks that arrive while one is running are
skipped.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

import structlog
from pydantic import BaseModel, ConfigDict

from mailsync.conversations.store import ConversationStore
from mailsync.domain.errors import (
    AuthRequired,
    ErrorReport,
    InvalidTransitionError,
    ProviderQuotaExceeded,
    ValidationFailure,
    to_error_report,
)
from mailsync.domain.models import Email, normalize_address
from mailsync.domain.types import ChangeKind, SyncState
from mailsync.email.models import OutboundEmail, validate_outbound
from mailsync.email.normalizer import email_from_outbound, normalize_message
from mailsync.email.ports import MailProvider, RawMessage
from mailsync.events import ChangeEvent
from mailsync.observability.metrics import CONVERSATIONS, EMAILS_MERGED, SYNC_PASSES
from mailsync.sync.machine import SyncStateMachine
from mailsync.sync.transitions import SyncEvent

logger = structlog.get_logger()

AuthRequiredHook = Callable[[ErrorReport], None]


class SyncResult(BaseModel):
    """Outcome of one completed sync pass."""

    model_config = ConfigDict(frozen=True)

    fetched: int
    merged: int
    skipped: int
    conversations: int
    completed_at: datetime


class SyncStatus(BaseModel):
    """Snapshot of the orchestrator for status reporting."""

    model_config = ConfigDict(frozen=True)

    state: SyncState
    is_loading: bool
    user_address: str | None
    last_synced_at: datetime | None
    last_error: ErrorReport | None


class SyncOrchestrator:
    """Keeps a ``ConversationStore`` in step with a remote mailbox.

    Args:
        store: The conversation store to merge into.
        provider: The remote mailbox.
        interval: Seconds between automatic passes.
        max_count: Maximum messages fetched per pass.
        quota_backoff: Default pause in seconds after the provider
            rate-limits the account.
        post_send_delay: Seconds to wait after sending before the silent
            sync that picks up the server copy.
        on_auth_required: Called with the error report when the provider
            rejects the session; upstream should sign the user out.
    """

    def __init__(
        self,
        store: ConversationStore,
        provider: MailProvider,
        interval: float = 10.0,
        max_count: int = 100,
        quota_backoff: float = 60.0,
        post_send_delay: float = 2.0,
        on_auth_required: AuthRequiredHook | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._interval = interval
        self._max_count = max_count
        self._quota_backoff = quota_backoff
        self._post_send_delay = post_send_delay
        self._on_auth_required = on_auth_required

        self._machine = SyncStateMachine()
        self._user_address: str | None = None
        self._loop_task: asyncio.Task[None] | None = None
        self._pass_task: asyncio.Task[SyncResult] | None = None
        self._background: set[asyncio.Task[None]] = set()
        self._disable_after_pass = False
        self._backoff_until = 0.0

        self.is_loading = False
        self.last_synced_at: datetime | None = None
        self.last_error: ErrorReport | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._machine.state

    @property
    def machine(self) -> SyncStateMachine:
        return self._machine

    @property
    def user_address(self) -> str | None:
        return self._user_address

    @property
    def is_syncing(self) -> bool:
        """True while a pass is in flight."""
        return self._machine.is_active

    def status(self) -> SyncStatus:
        return SyncStatus(
            state=self._machine.state,
            is_loading=self.is_loading,
            user_address=self._user_address,
            last_synced_at=self.last_synced_at,
            last_error=self.last_error,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_auto_sync(self) -> None:
        """Resolve the account, run an initial visible pass, then poll periodically.

        If the store still holds another account's mirror, it is purged
        before the new account is bound.

        Raises:
            AuthRequired: If the provider cannot identify the account.
        """
        if self._machine.state != SyncState.DISABLED:
            logger.debug("auto_sync_already_running", state=self._machine.state.value)
            return

        user = normalize_address(await asyncio.to_thread(self._provider.current_user_address))
        if self._store.user_address is not None and self._store.user_address != user:
            logger.info("account_switched", previous=self._store.user_address, user=user)
            self._store.purge()
        self._store.bind_user(user)
        self._user_address = user

        self._disable_after_pass = False
        self._backoff_until = 0.0
        self._machine.trigger(SyncEvent.START)
        self._loop_task = asyncio.create_task(self._run_loop())
        self._start_pass(silent=False)
        logger.info("auto_sync_started", user=user, interval=self._interval)

    def stop_auto_sync(self) -> None:
        """Stop periodic polling.

        An in-flight pass is allowed to finish; the machine moves to
        ``DISABLED`` once it settles.  No further ticks are scheduled.
        """
        if self._loop_task is not None:
            self._loop_task.cancel()
            self._loop_task = None
        for task in list(self._background):
            task.cancel()

        if self._machine.state == SyncState.DISABLED:
            return
        if self._machine.is_active:
            self._disable_after_pass = True
            logger.info("auto_sync_stopping", state=self._machine.state.value)
        else:
            self._machine.trigger(SyncEvent.STOP)
            logger.info("auto_sync_stopped")

    async def teardown(self, purge: bool = True) -> None:
        """Stop syncing, wait for the in-flight pass, and optionally purge the store.

        Used on sign-out or account switch.

        Args:
            purge: Delete every stored conversation afterwards.
        """
        self.stop_auto_sync()
        await self.wait_for_pass()
        if purge:
            self._store.purge()
        self._user_address = None
        self.last_error = None
        self.last_synced_at = None
        logger.info("sync_torn_down", purged=purge)

    async def wait_for_pass(self) -> None:
        """Wait until the in-flight pass, if any, has settled."""
        task = self._pass_task
        if task is not None and not task.done():
            await asyncio.wait({task})

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def sync_now(self, silent: bool = False) -> SyncResult | None:
        """Run one pass immediately.

        Args:
            silent: When False, ``is_loading`` is set for the duration.

        Returns:
            The pass result, or ``None`` if a pass was already in flight and
            this request was skipped.

        Raises:
            InvalidTransitionError: If auto-sync has not been started.
            AuthRequired | NetworkFailure | ProviderQuotaExceeded: If the
                fetch failed.  The store is untouched.
            StorageFailure: If the merge could not be committed.
        """
        if self._machine.state == SyncState.DISABLED:
            raise InvalidTransitionError(self._machine.state, SyncEvent.POLL)
        if self._machine.is_active:
            logger.debug("sync_skipped_in_flight")
            return None
        task = self._start_pass(silent=silent)
        return await asyncio.shield(task)

    def _start_pass(self, silent: bool) -> asyncio.Task[SyncResult]:
        self._machine.trigger(SyncEvent.POLL)
        if not silent:
            self.is_loading = True
        task = asyncio.create_task(self._run_pass(silent))
        task.add_done_callback(self._pass_done)
        self._pass_task = task
        return task

    def _pass_done(self, task: asyncio.Task[SyncResult]) -> None:
        # Failures were already reported through the notifier
        if not task.cancelled():
            task.exception()

    async def _run_pass(self, silent: bool) -> SyncResult:
        try:
            try:
                raw = await asyncio.to_thread(self._provider.fetch_messages, self._max_count)
            except Exception as exc:
                self._machine.trigger(SyncEvent.FETCH_FAILED)
                self._report_failure(exc, outcome="fetch_failed")
                raise

            self._machine.trigger(SyncEvent.FETCHED)
            try:
                result = self._merge(raw)
            except Exception as exc:
                self._machine.trigger(SyncEvent.MERGE_FAILED)
                self._report_failure(exc, outcome="merge_failed")
                raise

            self._machine.trigger(SyncEvent.MERGED)
            self.last_synced_at = result.completed_at
            self.last_error = None
            SYNC_PASSES.labels(outcome="success").inc()
            logger.info(
                "sync_pass_complete",
                silent=silent,
                fetched=result.fetched,
                merged=result.merged,
                skipped=result.skipped,
            )
            return result
        finally:
            if not silent:
                self.is_loading = False
            self._settle()

    def _merge(self, raw: list[RawMessage]) -> SyncResult:
        user = self._require_user()
        emails: list[Email] = []
        skipped = 0
        for message in raw:
            try:
                emails.append(normalize_message(message, user))
            except ValidationFailure as exc:
                skipped += 1
                logger.warning("message_skipped", provider_id=message.get("id"), error=exc.message)

        with self._store.batch():
            for email in emails:
                self._store.upsert(email, user)

        conversations = len(self._store.list_conversations())
        EMAILS_MERGED.inc(len(emails))
        CONVERSATIONS.set(conversations)
        return SyncResult(
            fetched=len(raw),
            merged=len(emails),
            skipped=skipped,
            conversations=conversations,
            completed_at=datetime.now(tz=UTC),
        )

    def _settle(self) -> None:
        if self._disable_after_pass and self._machine.state == SyncState.IDLE:
            self._disable_after_pass = False
            self._machine.trigger(SyncEvent.STOP)
            logger.info("auto_sync_stopped")

    def _report_failure(self, exc: Exception, outcome: str) -> None:
        report = to_error_report(exc)
        self.last_error = report
        SYNC_PASSES.labels(outcome=outcome).inc()
        logger.warning("sync_pass_failed", outcome=outcome, kind=report.kind.value, error=report.message)

        if isinstance(exc, ProviderQuotaExceeded):
            delay = max(exc.retry_after, self._quota_backoff)
            self._backoff_until = asyncio.get_running_loop().time() + delay
            logger.info("sync_quota_backoff", seconds=delay)

        self._store.notifier.emit(ChangeEvent(kind=ChangeKind.SYNC_FAILED, error=report))

        if isinstance(exc, AuthRequired):
            self._handle_auth_required(report)

    def _handle_auth_required(self, report: ErrorReport) -> None:
        self.stop_auto_sync()
        if self._on_auth_required is not None:
            self._on_auth_required(report)

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self._tick()

    def _tick(self) -> None:
        if self._machine.state != SyncState.IDLE:
            logger.debug("sync_tick_skipped", state=self._machine.state.value)
            return
        if asyncio.get_running_loop().time() < self._backoff_until:
            logger.debug("sync_tick_backoff")
            return
        self._start_pass(silent=True)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send_message(self, outbound: OutboundEmail) -> Email:
        """Send *outbound* and show it locally before the server copy arrives.

        The local copy carries the outbound ``Message-ID``; the silent sync
        scheduled after ``post_send_delay`` merges the server copy into it.

        Returns:
            The local copy as stored.

        Raises:
            ValidationFailure: If the message must not be sent.
            AuthRequired | NetworkFailure | ProviderQuotaExceeded: If sending
                failed.  Nothing is stored in that case.
        """
        validate_outbound(outbound)
        user = self._require_user()
        try:
            response = await asyncio.to_thread(self._provider.send_message, outbound)
        except AuthRequired as exc:
            self._handle_auth_required(to_error_report(exc))
            raise

        local = email_from_outbound(outbound, user)
        if response.get("threadId") and local.thread_id is None:
            local = local.model_copy(update={"thread_id": response["threadId"]})
        conversation = self._store.upsert(local, user)
        logger.info("message_sent", conversation=conversation.id, provider_id=response.get("id"))

        self._schedule_post_send_sync()
        return local

    def _schedule_post_send_sync(self) -> None:
        if self._machine.state == SyncState.DISABLED:
            return
        task = asyncio.create_task(self._delayed_sync())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _delayed_sync(self) -> None:
        await asyncio.sleep(self._post_send_delay)
        if self._machine.state == SyncState.IDLE:
            self._start_pass(silent=True)

    def _require_user(self) -> str:
        if self._user_address is None:
            raise AuthRequired("Sync has not been started for an account")
        return self._user_address
