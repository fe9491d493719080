"""Tests for SyncStateMachine state transitions."""

from watchsync.domain.watch.sync_state_machine import SyncStateMachine
from watchsync.schemas import SyncState


class TestCanTransition:
    """Tests for SyncStateMachine.can_transition method."""

    def test_idle_to_attaching_valid(self):
        """Test IDLE -> ATTACHING is a valid transition."""
        assert SyncStateMachine.can_transition(SyncState.IDLE, SyncState.ATTACHING) is True

    def test_idle_to_detached_valid(self):
        """Test IDLE -> DETACHED is a valid transition (torn down before attaching)."""
        assert SyncStateMachine.can_transition(SyncState.IDLE, SyncState.DETACHED) is True

    def test_idle_to_syncing_invalid(self):
        """Test IDLE -> SYNCING is an invalid transition (must go through ATTACHING)."""
        assert SyncStateMachine.can_transition(SyncState.IDLE, SyncState.SYNCING) is False

    def test_attaching_to_waiting_valid(self):
        """Test ATTACHING -> WAITING_FOR_PEER is a valid transition."""
        assert (
            SyncStateMachine.can_transition(SyncState.ATTACHING, SyncState.WAITING_FOR_PEER) is True
        )

    def test_attaching_to_syncing_valid(self):
        """Test ATTACHING -> SYNCING is a valid transition."""
        assert SyncStateMachine.can_transition(SyncState.ATTACHING, SyncState.SYNCING) is True

    def test_waiting_to_syncing_valid(self):
        """Test WAITING_FOR_PEER -> SYNCING is a valid transition (peer joined)."""
        assert (
            SyncStateMachine.can_transition(SyncState.WAITING_FOR_PEER, SyncState.SYNCING) is True
        )

    def test_syncing_to_waiting_invalid(self):
        """Test SYNCING -> WAITING_FOR_PEER is invalid (the gate only applies on attach)."""
        assert (
            SyncStateMachine.can_transition(SyncState.SYNCING, SyncState.WAITING_FOR_PEER) is False
        )

    def test_syncing_to_detached_valid(self):
        """Test SYNCING -> DETACHED is a valid transition."""
        assert SyncStateMachine.can_transition(SyncState.SYNCING, SyncState.DETACHED) is True

    def test_detached_to_anything_invalid(self):
        """Test DETACHED has no outgoing transitions."""
        for state in SyncState:
            assert SyncStateMachine.can_transition(SyncState.DETACHED, state) is False


class TestStateQueries:
    """Tests for is_terminal, is_attached and get_valid_transitions."""

    def test_only_detached_is_terminal(self):
        """Test DETACHED is the only terminal state."""
        assert [s for s in SyncState if SyncStateMachine.is_terminal(s)] == [SyncState.DETACHED]

    def test_attached_states(self):
        """Test WAITING_FOR_PEER and SYNCING count as attached."""
        assert SyncStateMachine.is_attached(SyncState.WAITING_FOR_PEER) is True
        assert SyncStateMachine.is_attached(SyncState.SYNCING) is True
        assert SyncStateMachine.is_attached(SyncState.ATTACHING) is False

    def test_get_valid_transitions(self):
        """Test the valid transitions out of ATTACHING."""
        assert SyncStateMachine.get_valid_transitions(SyncState.ATTACHING) == {
            SyncState.WAITING_FOR_PEER,
            SyncState.SYNCING,
            SyncState.DETACHED,
        }
