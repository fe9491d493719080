"""Tests for SyncGuard settle and echo windows."""

from tests.fixtures.watch_fixtures import FakeClock
from watchsync.domain.watch.sync_guard import InboundSkipReason, SyncGuard


def make_guard(clock: FakeClock) -> SyncGuard:
    return SyncGuard(echo_window=1.0, settle_delay=0.5, clock=clock)


class TestInboundApply:
    """Tests for the inbound-apply flag and settle delay."""

    def test_idle_guard_allows_everything(self):
        """Test a fresh guard skips nothing."""
        guard = make_guard(FakeClock())

        assert guard.inbound_active is False
        assert guard.inbound_skip_reason() is None

    def test_active_while_applying(self):
        """Test the flag is reported while an inbound update is applied."""
        guard = make_guard(FakeClock())

        guard.begin_inbound_apply()

        assert guard.inbound_active is True
        assert guard.inbound_skip_reason() == InboundSkipReason.APPLYING

    def test_settle_delay_after_apply(self):
        """Test the guard stays active for the settle delay after applying."""
        # Arrange
        clock = FakeClock()
        guard = make_guard(clock)

        # Act
        guard.begin_inbound_apply()
        guard.end_inbound_apply()

        # Assert
        assert guard.inbound_skip_reason() == InboundSkipReason.SETTLING
        clock.advance(0.49)
        assert guard.inbound_active is True
        clock.advance(0.02)
        assert guard.inbound_active is False


class TestEchoWindow:
    """Tests for the suppress-echo window."""

    def test_echo_within_window(self):
        """Test a notification right after an outbound write is an echo."""
        clock = FakeClock()
        guard = make_guard(clock)

        guard.mark_outbound()
        clock.advance(0.9)

        assert guard.last_outbound_at == 1000.0
        assert guard.inbound_skip_reason() == InboundSkipReason.ECHO

    def test_echo_window_expires(self):
        """Test notifications after the window are applied."""
        clock = FakeClock()
        guard = make_guard(clock)

        guard.mark_outbound()
        clock.advance(1.0)

        assert guard.within_echo_window() is False
        assert guard.inbound_skip_reason() is None

    def test_ignore_echo_bypasses_window_only(self):
        """Test ignore_echo bypasses the echo window but not the settle delay."""
        clock = FakeClock()
        guard = make_guard(clock)

        guard.mark_outbound()
        assert guard.inbound_skip_reason(ignore_echo=True) is None

        guard.begin_inbound_apply()
        assert guard.inbound_skip_reason(ignore_echo=True) == InboundSkipReason.APPLYING

    def test_reset(self):
        """Test reset clears every window."""
        clock = FakeClock()
        guard = make_guard(clock)
        guard.mark_outbound()
        guard.begin_inbound_apply()

        guard.reset()

        assert guard.inbound_skip_reason() is None
        assert guard.last_outbound_at is None


class TestEchoMatching:
    """Tests for matching inbound records against the last outbound write."""

    def make_guard(self, clock: FakeClock) -> SyncGuard:
        return SyncGuard(echo_window=1.0, settle_delay=0.5, echo_tolerance=2.0, clock=clock)

    def test_matching_record_is_echo(self):
        """Test a record carrying what was written is an echo."""
        clock = FakeClock()
        guard = self.make_guard(clock)

        guard.mark_outbound(500.0, True)
        clock.advance(0.5)

        assert guard.inbound_skip_reason(playback_time=501.5, is_playing=True) == InboundSkipReason.ECHO

    def test_different_play_state_is_not_echo(self):
        """Test a peer pause inside the window is not mistaken for an echo."""
        clock = FakeClock()
        guard = self.make_guard(clock)

        guard.mark_outbound(500.0, True)
        clock.advance(0.5)

        assert guard.is_echo(502.0, False) is False
        assert guard.inbound_skip_reason(playback_time=502.0, is_playing=False) is None

    def test_distant_position_is_not_echo(self):
        """Test a peer seek inside the window is not mistaken for an echo."""
        clock = FakeClock()
        guard = self.make_guard(clock)

        guard.mark_outbound(500.0, True)
        clock.advance(0.3)

        assert guard.is_echo(0.0, True) is False

    def test_forget_outbound(self):
        """Test a forgotten write no longer produces echoes."""
        clock = FakeClock()
        guard = self.make_guard(clock)
        guard.mark_outbound(500.0, True)

        guard.forget_outbound()

        assert guard.last_outbound_at is None
        assert guard.is_echo(500.0, True) is False

    def test_settle_remaining(self):
        """Test the remaining settle time counts down to zero."""
        clock = FakeClock()
        guard = self.make_guard(clock)
        guard.begin_inbound_apply()
        guard.end_inbound_apply()

        clock.advance(0.2)
        assert abs(guard.settle_remaining() - 0.3) < 1e-9
        clock.advance(1.0)
        assert guard.settle_remaining() == 0.0
