"""Playback sync engine.

One engine owns one attachment of a local media element to a shared watch
session. It pushes local intent (play, pause, seek, host heartbeat) to the
session store, and reconciles the local player toward every accepted inbound
record. The ``SyncGuard`` keeps the two directions from feeding each other.

Reconciliation always compares against the player's real state, never against
a cached copy of the previous record, so redelivered and duplicate
notifications are no-ops once the player has converged. An out-of-order
notification carrying an older position is only acted on when it is more than
the drift tolerance away from the local position; staleness inside that window
is accepted.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import time
from collections.abc import Callable

from loguru import logger

from watchsync.schemas import FeedStatus, PlaybackUpdate, SyncState, WatchSession
from watchsync.services.change_feed import ChangeFeedSubscriber
from watchsync.services.session_store import SessionStoreClient
from watchsync.shared.utils import format_error
from watchsync.utils.app_errors import (
    AppError,
    DriftUnrecoverable,
    FeedDisconnected,
    InvalidStateTransition,
    StoreUnavailable,
)

from .media import LocalPlaybackState, MediaElement
from .session_models import SyncSettings
from .sync_guard import InboundSkipReason, SyncGuard
from .sync_state_machine import SyncStateMachine

Listener = Callable[[object], None]


class PlaybackSyncEngine:
    """Synchronizes one local player with a shared watch session."""

    def __init__(
        self,
        *,
        session_id: str,
        media: MediaElement,
        store: SessionStoreClient,
        feed: ChangeFeedSubscriber,
        is_host: bool = False,
        settings: SyncSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_id = session_id
        self._media = media
        self._store = store
        self._feed = feed
        self._is_host = is_host
        self._settings = settings or SyncSettings.from_config()
        self._guard = SyncGuard(
            echo_window=self._settings.echo_window_seconds,
            settle_delay=self._settings.settle_delay_seconds,
            echo_tolerance=self._settings.drift_tolerance_seconds,
            clock=clock,
        )

        self._state = SyncState.IDLE
        self._participants = 1
        self._buffering = False
        self._resync_pending = False
        self._consecutive_corrections = 0
        # Latest record skipped while settling, applied once the guard clears
        self._deferred_record: WatchSession | None = None

        self._debounce_task: asyncio.Task[None] | None = None
        self._deferred_task: asyncio.Task[None] | None = None
        self._tick_task: asyncio.Task[None] | None = None

        self._state_listeners: list[Listener] = []
        self._participant_listeners: list[Listener] = []
        self._error_listeners: list[Listener] = []

    # ==================== OBSERVABLES ====================

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_host(self) -> bool:
        return self._is_host

    @property
    def participants(self) -> int:
        return self._participants

    @property
    def is_waiting_for_peer(self) -> bool:
        return self._state == SyncState.WAITING_FOR_PEER

    @property
    def feed_status(self) -> FeedStatus:
        return self._feed.status

    @property
    def guard(self) -> SyncGuard:
        return self._guard

    @property
    def local_state(self) -> LocalPlaybackState:
        return LocalPlaybackState(
            current_time=self._media.current_time,
            paused=self._media.paused,
            buffering=self._buffering,
        )

    def add_state_listener(self, listener: Callable[[SyncState], None]) -> Callable[[], None]:
        return self._add_listener(self._state_listeners, listener)

    def add_participants_listener(self, listener: Callable[[int], None]) -> Callable[[], None]:
        return self._add_listener(self._participant_listeners, listener)

    def add_error_listener(self, listener: Callable[[AppError], None]) -> Callable[[], None]:
        return self._add_listener(self._error_listeners, listener)

    @staticmethod
    def _add_listener(listeners: list[Listener], listener: Listener) -> Callable[[], None]:
        listeners.append(listener)

        def _remove() -> None:
            with contextlib.suppress(ValueError):
                listeners.remove(listener)

        return _remove

    def _notify(self, listeners: list[Listener], value: object) -> None:
        for listener in list(listeners):
            try:
                listener(value)
            except Exception as e:
                logger.error("Sync engine {} listener failed: {}", self._session_id, format_error(e))

    def _transition(self, new_state: SyncState) -> None:
        if self._state == new_state:
            return
        if not SyncStateMachine.can_transition(self._state, new_state):
            raise InvalidStateTransition(
                errmesg=f"Invalid sync state transition: {self._state} -> {new_state}"
            )
        logger.info("Sync engine {} state: {} -> {}", self._session_id, self._state, new_state)
        self._state = new_state
        self._notify(self._state_listeners, new_state)

    def _set_participants(self, participants: int) -> None:
        if participants == self._participants:
            return
        self._participants = participants
        self._notify(self._participant_listeners, participants)

    def _report_error(self, error: AppError) -> None:
        self._notify(self._error_listeners, error)

    # ==================== LIFECYCLE ====================

    async def attach(self) -> None:
        """
        Subscribe to the session feed and apply the initial snapshot.

        Never raises on I/O failure: a failed subscription or snapshot read leaves
        the engine syncing on stale local state until the next accepted record.
        """
        self._transition(SyncState.ATTACHING)

        try:
            await self._feed.subscribe(self._session_id, self.handle_notification, self._on_feed_error)
        except Exception as e:
            logger.warning("Sync engine {} failed to subscribe: {}", self._session_id, format_error(e))
            self._resync_pending = True

        try:
            snapshot = await self._store.get_by_id(self._session_id)
        except StoreUnavailable as e:
            logger.warning("Sync engine {} snapshot unavailable: {}", self._session_id, e.errmesg)
            snapshot = None

        # detach() may have run while we were waiting on I/O
        if self._state != SyncState.ATTACHING:
            return

        await self._apply_snapshot(snapshot)
        self._start_tick()

    async def detach(self) -> None:
        """Tear down the attachment. Terminal; safe to call more than once."""
        if self._state == SyncState.DETACHED:
            return
        self._transition(SyncState.DETACHED)

        self._cancel_debounce()
        self._cancel_deferred()
        if self._tick_task is not None:
            self._tick_task.cancel()
            self._tick_task = None

        try:
            await self._feed.unsubscribe()
        except Exception as e:
            logger.warning("Sync engine {} failed to unsubscribe: {}", self._session_id, format_error(e))

        self._guard.reset()
        self._state_listeners.clear()
        self._participant_listeners.clear()
        self._error_listeners.clear()

    async def __aenter__(self) -> "PlaybackSyncEngine":
        await self.attach()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.detach()

    async def _apply_snapshot(self, snapshot: WatchSession | None) -> None:
        if snapshot is None:
            logger.warning("Sync engine {} attached without snapshot", self._session_id)
            self._transition(SyncState.SYNCING)
            return

        self._set_participants(snapshot.participants)

        if self._is_host and snapshot.participants <= 1:
            self._transition(SyncState.WAITING_FOR_PEER)
            self._hold_paused()
            return

        self._transition(SyncState.SYNCING)
        await self._reconcile(snapshot)

    def _hold_paused(self) -> None:
        self._guard.begin_inbound_apply()
        try:
            if not self._media.paused:
                self._media.pause()
        finally:
            self._guard.end_inbound_apply()

    # ==================== INBOUND ====================

    async def handle_notification(self, record: WatchSession) -> None:
        """Apply one record delivered by the change feed."""
        if self._state not in (SyncState.ATTACHING, SyncState.WAITING_FOR_PEER, SyncState.SYNCING):
            logger.debug("Sync engine {} ignoring record while {}", self._session_id, self._state)
            return
        if record.id != self._session_id:
            logger.warning("Sync engine {} received record for session {}", self._session_id, record.id)
            return

        # Informational, not subject to the guard
        self._set_participants(record.participants)

        if self._state == SyncState.ATTACHING:
            return

        if self._state == SyncState.WAITING_FOR_PEER:
            if record.participants > 1:
                logger.info("Sync engine {} peer joined ({} participants)", self._session_id, record.participants)
                self._transition(SyncState.SYNCING)
            return

        reason = self._guard.inbound_skip_reason(
            ignore_echo=self._resync_pending,
            playback_time=record.playback_time,
            is_playing=record.is_playing,
        )
        if reason is not None:
            logger.debug("Sync engine {} skipped inbound record ({})", self._session_id, reason)
            if reason != InboundSkipReason.ECHO:
                self._defer(record)
            return

        await self._accept(record)

    async def _accept(self, record: WatchSession) -> None:
        self._resync_pending = False
        self._cancel_deferred()
        # Someone else wrote after us; our pending echo no longer reflects the store
        self._guard.forget_outbound()
        await self._reconcile(record)

    def _defer(self, record: WatchSession) -> None:
        self._deferred_record = record
        if self._deferred_task is None or self._deferred_task.done():
            self._deferred_task = asyncio.create_task(
                self._apply_deferred_after_settle(),
                name=f"sync-deferred:{self._session_id}",
            )

    def _cancel_deferred(self) -> None:
        self._deferred_record = None
        if self._deferred_task is not None and not self._deferred_task.done():
            if self._deferred_task is not asyncio.current_task():
                self._deferred_task.cancel()
        self._deferred_task = None

    async def _apply_deferred_after_settle(self) -> None:
        await asyncio.sleep(self._guard.settle_remaining())
        await self._apply_deferred()

    async def _apply_deferred(self) -> bool:
        """Reconcile toward the record skipped while settling, if the guard allows it now."""
        record = self._deferred_record
        if record is None or self._state != SyncState.SYNCING or self._guard.inbound_active:
            return False
        logger.debug("Sync engine {} applying deferred record", self._session_id)
        await self._accept(record)
        return True

    async def _reconcile(self, record: WatchSession) -> None:
        self._guard.begin_inbound_apply()
        try:
            self._reconcile_position(record.playback_time)
            await self._reconcile_play_state(record.is_playing)
        finally:
            self._guard.end_inbound_apply()

    async def _reconcile_play_state(self, is_playing: bool) -> None:
        paused = self._media.paused
        if is_playing and paused:
            logger.debug("Sync engine {} remote play", self._session_id)
            await self._start_playback()
        elif not is_playing and not paused:
            logger.debug("Sync engine {} remote pause", self._session_id)
            self._media.pause()

    async def _start_playback(self) -> None:
        try:
            result = self._media.play()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            # Players may refuse to start without a user gesture
            logger.warning("Sync engine {} local play() refused: {}", self._session_id, e)

    def _reconcile_position(self, remote_time: float) -> None:
        local_time = self._media.current_time
        drift = abs(local_time - remote_time)
        if drift <= self._settings.drift_tolerance_seconds:
            self._consecutive_corrections = 0
            return

        logger.debug(
            "Sync engine {} seeking {:.2f} -> {:.2f} (drift {:.2f}s)",
            self._session_id,
            local_time,
            remote_time,
            drift,
        )
        self._media.seek(remote_time)
        self._consecutive_corrections += 1

        if self._consecutive_corrections == self._settings.max_consecutive_corrections:
            error = DriftUnrecoverable(
                errmesg=(
                    f"Session {self._session_id} needed {self._consecutive_corrections} "
                    f"consecutive corrections (last drift {drift:.2f}s)"
                )
            )
            logger.warning("{} {}", error.errcode, error.errmesg)
            self._report_error(error)

    def _on_feed_error(self, error: FeedDisconnected) -> None:
        logger.warning(
            "Sync engine {} feed error, playback continues unsynced: {}",
            self._session_id,
            error.errmesg,
        )
        # The next record after a gap is authoritative
        self._resync_pending = True
        self._report_error(error)

    # ==================== OUTBOUND ====================

    def on_local_play(self) -> None:
        self._on_local_event("play")

    def on_local_pause(self) -> None:
        self._on_local_event("pause")

    def on_local_seek(self) -> None:
        self._on_local_event("seek")

    def on_local_waiting(self) -> None:
        self._buffering = True

    def on_local_can_play(self) -> None:
        self._buffering = False

    def _on_local_event(self, kind: str) -> None:
        if self._state == SyncState.WAITING_FOR_PEER:
            if kind == "play" and not self._guard.inbound_active:
                logger.info("Sync engine {} waiting for a peer, holding playback", self._session_id)
                self._hold_paused()
            return
        if self._state != SyncState.SYNCING:
            return
        if self._guard.inbound_active:
            logger.debug("Sync engine {} suppressed local {} while applying inbound", self._session_id, kind)
            return
        # The user acted after the deferred record arrived
        self._cancel_deferred()
        self._schedule_flush()

    def _schedule_flush(self) -> None:
        self._cancel_debounce()
        self._debounce_task = asyncio.create_task(
            self._debounced_flush(),
            name=f"sync-debounce:{self._session_id}",
        )

    def _cancel_debounce(self) -> None:
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None

    async def _debounced_flush(self) -> None:
        await asyncio.sleep(self._settings.debounce_seconds)
        # Later events must start a new timer, not cancel this write
        self._debounce_task = None
        await self.flush_outbound()

    async def flush_outbound(self) -> bool:
        """Push the player's current (time, playing) pair to the store now."""
        if self._state != SyncState.SYNCING or self._guard.inbound_active:
            return False

        local = self.local_state
        update = PlaybackUpdate(playback_time=max(0.0, local.current_time), is_playing=local.is_playing)
        return await self._push(update)

    async def restart_local(self) -> bool:
        """Rewind the local player to the start, paused, and push that state."""
        if self._state != SyncState.SYNCING:
            return False

        self._cancel_debounce()
        self._cancel_deferred()
        self._guard.begin_inbound_apply()
        try:
            self._media.seek(0.0)
            if not self._media.paused:
                self._media.pause()
        finally:
            self._guard.end_inbound_apply()

        return await self._push(PlaybackUpdate(playback_time=0.0, is_playing=False))

    async def restart_for_everyone(self) -> bool:
        """Rewind the local player to the start, start it, and push (0, playing) to everyone."""
        if self._state != SyncState.SYNCING:
            return False

        self._cancel_debounce()
        self._cancel_deferred()
        self._guard.begin_inbound_apply()
        try:
            self._media.seek(0.0)
            if self._media.paused:
                await self._start_playback()
        finally:
            self._guard.end_inbound_apply()

        logger.info("Sync engine {} restarting playback for everyone", self._session_id)
        return await self._push(PlaybackUpdate(playback_time=0.0, is_playing=True))

    async def _push(self, update: PlaybackUpdate) -> bool:
        # Recorded before the write so the echo is recognized however fast it returns
        self._guard.mark_outbound(update.playback_time, update.is_playing)
        try:
            result = await self._store.update(self._session_id, update)
        except StoreUnavailable as e:
            logger.warning("Sync engine {} outbound write failed: {}", self._session_id, e.errmesg)
            return False
        except Exception as e:
            logger.error("Sync engine {} outbound write crashed: {}", self._session_id, format_error(e))
            return False

        if result is None:
            logger.warning("Sync engine {} session no longer exists", self._session_id)
            return False
        return True

    def _start_tick(self) -> None:
        if not self._is_host or self._settings.tick_interval_seconds <= 0:
            return
        self._tick_task = asyncio.create_task(self._tick_loop(), name=f"sync-tick:{self._session_id}")

    async def _tick_loop(self) -> None:
        while not SyncStateMachine.is_terminal(self._state):
            await asyncio.sleep(self._settings.tick_interval_seconds)
            if self._deferred_record is not None and await self._apply_deferred():
                # Never overwrite a write we have not reconciled toward yet
                continue
            if self._state != SyncState.SYNCING or self._buffering or self._media.paused:
                continue
            if self._debounce_task is not None:
                # A pending discrete event will carry the latest state
                continue
            await self.flush_outbound()


__all__ = ["PlaybackSyncEngine"]
