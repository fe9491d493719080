"""Sync engine state machine for managing attachment state transitions."""

from watchsync.schemas import SyncState


class SyncStateMachine:
    """State machine for a playback sync engine attachment.

    State flow with triggers:
    - IDLE -> ATTACHING (attach() called) | DETACHED
    - ATTACHING -> WAITING_FOR_PEER (host snapshot shows a single participant) | SYNCING | DETACHED
    - WAITING_FOR_PEER -> SYNCING (notification reports participants > 1) | DETACHED
    - SYNCING -> DETACHED (detach() called)
    - DETACHED is terminal; a new attachment starts a fresh engine
    """

    TRANSITIONS: dict[SyncState, set[SyncState]] = {
        SyncState.IDLE: {SyncState.ATTACHING, SyncState.DETACHED},
        SyncState.ATTACHING: {
            SyncState.WAITING_FOR_PEER,
            SyncState.SYNCING,
            SyncState.DETACHED,
        },
        SyncState.WAITING_FOR_PEER: {SyncState.SYNCING, SyncState.DETACHED},
        SyncState.SYNCING: {SyncState.DETACHED},
        SyncState.DETACHED: set(),
    }

    TERMINAL_STATES: set[SyncState] = {SyncState.DETACHED}

    # States in which inbound notifications may touch the local media element
    ATTACHED_STATES: set[SyncState] = {SyncState.WAITING_FOR_PEER, SyncState.SYNCING}

    @classmethod
    def can_transition(cls, current: SyncState, new: SyncState) -> bool:
        """Check if state transition is valid.

        Args:
            current: Current engine state
            new: Target state to transition to

        Returns:
            True if transition is valid, False otherwise
        """
        return new in cls.TRANSITIONS.get(current, set())

    @classmethod
    def is_terminal(cls, state: SyncState) -> bool:
        return state in cls.TERMINAL_STATES

    @classmethod
    def is_attached(cls, state: SyncState) -> bool:
        return state in cls.ATTACHED_STATES

    @classmethod
    def get_valid_transitions(cls, state: SyncState) -> set[SyncState]:
        return cls.TRANSITIONS.get(state, set())
