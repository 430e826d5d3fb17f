#!/usr/bin/env python3
"""
Test Suite for the Calibration Transition Function

The transition function is pure, so every protocol rule is exercised here
without an engine, a clock or a transport.
"""

import sys
import os
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from fc_calibration import transitions as tr
from fc_calibration.orientation_validator import OrientationResult
from fc_calibration.protocol.messages import (
    AbortCalibration,
    AckResult,
    CommandAck,
    ConfirmPosition,
    MAV_CMD_ACCELCAL_VEHICLE_POS,
    MAV_CMD_PREFLIGHT_CALIBRATION,
    SensorKind,
    StartCalibration,
    StatusText,
)
from fc_calibration.session import SessionResult
from fc_calibration.states import (
    AwaitingAcknowledgement,
    AwaitingInstruction,
    AwaitingSampling,
    AwaitingUserPosition,
    Cancelled,
    Completed,
    Failed,
    HoldingStill,
    Idle,
    PositionAccepted,
    PositionRejected,
    Rejected,
    Rotating,
    Sampling,
    StateTag,
    TimedOut,
)
from fc_calibration.status_text import StatusTextInterpreter

ACCEL = tr.TransitionContext(SensorKind.ACCELEROMETER)
COMPASS = tr.TransitionContext(SensorKind.COMPASS)
BARO = tr.TransitionContext(SensorKind.BAROMETER)

_interpreter = StatusTextInterpreter()


def notice(text, severity=6):
    status = StatusText(severity=severity, text=text)
    return tr.NoticeReceived(status, _interpreter.classify(severity, text))


def ack(command_id, result=AckResult.ACCEPTED):
    return tr.AckReceived(CommandAck(command_id=command_id, result=result))


def effects_of(step, effect_type):
    return [e for e in step.effects if isinstance(e, effect_type)]


class TestStart:
    """Test session start and the first acknowledgement."""

    def test_start_sends_command(self):
        """Test Idle -> AwaitingAcknowledgement emits StartCalibration."""
        step = tr.step(Idle(), tr.StartRequested(SensorKind.ACCELEROMETER), ACCEL)

        assert isinstance(step.state, AwaitingAcknowledgement)
        sends = effects_of(step, tr.SendCommand)
        assert sends == [tr.SendCommand(StartCalibration(SensorKind.ACCELEROMETER))]

    def test_accel_ack_accepted(self):
        """Test accepted ack moves accelerometer to AwaitingInstruction."""
        step = tr.step(AwaitingAcknowledgement(), ack(MAV_CMD_PREFLIGHT_CALIBRATION), ACCEL)
        assert isinstance(step.state, AwaitingInstruction)

    def test_in_progress_counts_as_accepted(self):
        """Test IN_PROGRESS is treated as acceptance."""
        step = tr.step(
            AwaitingAcknowledgement(), ack(MAV_CMD_PREFLIGHT_CALIBRATION, AckResult.IN_PROGRESS), ACCEL
        )
        assert isinstance(step.state, AwaitingInstruction)

    @pytest.mark.parametrize("result,text", [
        (AckResult.TEMPORARILY_REJECTED, "vehicle may be armed or busy"),
        (AckResult.DENIED, "check vehicle state"),
        (AckResult.UNSUPPORTED, "not supported"),
        (AckResult.FAILED, "command failed"),
    ])
    def test_rejected_ack(self, result, text):
        """Test non-accepted acks reject the session with a reason."""
        step = tr.step(AwaitingAcknowledgement(), ack(MAV_CMD_PREFLIGHT_CALIBRATION, result), ACCEL)

        assert isinstance(step.state, Rejected)
        assert text in step.state.reason
        assert effects_of(step, tr.SealSession)[0].result == SessionResult.REJECTED

    def test_mismatched_command_ignored(self):
        """Test an ack for a different command is ignored."""
        step = tr.step(AwaitingAcknowledgement(), ack(400), ACCEL)

        assert not step.handled
        assert isinstance(step.state, AwaitingAcknowledgement)

    def test_compass_and_baro_variants(self):
        """Test compass rotates, barometer holds still."""
        assert tr.step(AwaitingAcknowledgement(), ack(MAV_CMD_PREFLIGHT_CALIBRATION), COMPASS).state == Rotating(0)
        assert isinstance(
            tr.step(AwaitingAcknowledgement(), ack(MAV_CMD_PREFLIGHT_CALIBRATION), BARO).state, HoldingStill
        )


class TestPositions:
    """Test the accelerometer position cycle."""

    def test_position_request(self):
        """Test a request opens the position."""
        step = tr.step(AwaitingInstruction(), notice("Place vehicle level and press any key."), ACCEL)

        assert step.state == AwaitingUserPosition(position=1)
        assert effects_of(step, tr.OpenPosition) == [tr.OpenPosition(1)]

    def test_confirm_enters_sampling(self):
        """Test confirm moves to Sampling without sending anything."""
        step = tr.step(AwaitingUserPosition(position=2), tr.ConfirmRequested(), ACCEL)

        assert step.state == Sampling(position=2)
        assert step.effects == ()

    def test_confirm_ignored_elsewhere(self):
        """Test confirm is only accepted when a position is awaited."""
        for state in (AwaitingInstruction(), AwaitingSampling(position=1), PositionAccepted(position=1)):
            assert not tr.step(state, tr.ConfirmRequested(), ACCEL).handled

    def test_valid_samples_send_confirm(self):
        """Test a passing validation sends ConfirmPosition(N)."""
        result = OrientationResult(True, "ok", 3, (0.0, 9.8, 0.0), 9.8, 10)
        step = tr.step(Sampling(position=3), tr.SamplesValidated(result), ACCEL)

        assert step.state == AwaitingSampling(position=3)
        assert tr.BeginConfirm(3, (0.0, 9.8, 0.0)) in step.effects
        assert tr.SendCommand(ConfirmPosition(position=3)) in step.effects
        # Attempt bookkeeping happens before the command goes out
        assert isinstance(step.effects[0], tr.BeginConfirm)

    def test_invalid_samples_correct_user(self):
        """Test a failing validation returns a correction and sends nothing."""
        result = OrientationResult(False, "Position 3 (RIGHT) incorrect", 3)
        step = tr.step(Sampling(position=3), tr.SamplesValidated(result), ACCEL)

        assert step.state == AwaitingUserPosition(position=3, correction="Position 3 (RIGHT) incorrect")
        assert effects_of(step, tr.SendCommand) == []
        assert effects_of(step, tr.RecordLocalRejection)
        notes = effects_of(step, tr.RecordNote)
        assert notes and notes[0].severity.value == "warning"

    def test_position_ack_accepted(self):
        """Test an accepted confirm ack marks the position accepted."""
        step = tr.step(AwaitingSampling(position=4), ack(MAV_CMD_ACCELCAL_VEHICLE_POS), ACCEL)

        assert step.state == PositionAccepted(position=4)
        assert effects_of(step, tr.AcceptPosition)[0].position == 4

    def test_position_ack_rejected(self):
        """Test a rejected confirm ack allows a retry."""
        step = tr.step(
            AwaitingSampling(position=4), ack(MAV_CMD_ACCELCAL_VEHICLE_POS, AckResult.TEMPORARILY_REJECTED), ACCEL
        )

        assert isinstance(step.state, PositionRejected)
        assert step.state.position == 4
        assert "NOSE DOWN" in step.state.reason
        assert tr.step(step.state, tr.ConfirmRequested(), ACCEL).state == Sampling(position=4)

    def test_next_request_after_accept(self):
        """Test the next request moves on from PositionAccepted."""
        step = tr.step(PositionAccepted(position=1), notice("Place vehicle on its LEFT side"), ACCEL)
        assert step.state == AwaitingUserPosition(position=2)


class TestOutOfOrder:
    """Test duplicate and out-of-order handling."""

    def test_repeated_request_is_noop(self):
        """Test a repeated request for the awaited position changes nothing."""
        state = AwaitingUserPosition(position=1, correction="tilted")
        step = tr.step(state, notice("Place vehicle level"), ACCEL)

        assert not step.handled
        assert step.state is state

    def test_repeated_request_while_rejected_is_noop(self):
        """Test a repeated request keeps the rejection state."""
        state = PositionRejected(position=2, reason="x")
        assert not tr.step(state, notice("Place vehicle on its LEFT side"), ACCEL).handled

    def test_request_while_awaiting_sampling_implies_accept(self):
        """Test request(M) while AwaitingSampling(N) accepts N."""
        step = tr.step(AwaitingSampling(position=1), notice("Place vehicle on its LEFT side"), ACCEL)

        assert step.state == AwaitingUserPosition(position=2)
        accepted = effects_of(step, tr.AcceptPosition)
        assert [a.position for a in accepted] == [1]

    def test_late_ack_is_ignored(self):
        """Test an ack arriving after the implied accept is ignored."""
        step = tr.step(AwaitingUserPosition(position=2), ack(MAV_CMD_ACCELCAL_VEHICLE_POS), ACCEL)
        assert not step.handled

    def test_confirm_send_failure_reopens_position(self):
        """Test a failed confirm send makes the position confirmable again."""
        step = tr.step(AwaitingSampling(position=4), tr.ConfirmSendFailed(4), ACCEL)

        assert step.state.tag == StateTag.POSITION_REJECTED
        assert "position 4 (NOSE DOWN)" in step.state.reason
        assert step.effects == ()

    def test_confirm_send_failure_for_other_position_ignored(self):
        """Test a stale send failure does not move another position."""
        assert not tr.step(AwaitingSampling(position=5), tr.ConfirmSendFailed(4), ACCEL).handled

    def test_duplicate_ack_ignored(self):
        """Test a second accepted ack for the same position is ignored."""
        step = tr.step(PositionAccepted(position=2), ack(MAV_CMD_ACCELCAL_VEHICLE_POS), ACCEL)
        assert not step.handled

    def test_request_before_start_ack(self):
        """Test a request arriving before the start ack is honoured."""
        step = tr.step(AwaitingAcknowledgement(), notice("Place vehicle level"), ACCEL)
        assert step.state == AwaitingUserPosition(position=1)


class TestCompletion:
    """Test that completion only follows firmware success."""

    def test_early_success_ignored(self):
        """Test success with missing positions is recorded and ignored."""
        ctx = tr.TransitionContext(SensorKind.ACCELEROMETER, frozenset({1, 2, 3}))
        step = tr.step(AwaitingUserPosition(position=4), notice("Calibration successful"), ctx)

        assert not step.handled
        assert isinstance(step.state, AwaitingUserPosition)
        assert "missing [4, 5, 6]" in effects_of(step, tr.RecordNote)[0].message

    def test_success_with_all_positions(self):
        """Test success after six accepted positions completes."""
        ctx = tr.TransitionContext(SensorKind.ACCELEROMETER, frozenset(range(1, 7)))
        step = tr.step(PositionAccepted(position=6), notice("Calibration successful"), ctx)

        assert isinstance(step.state, Completed)
        assert effects_of(step, tr.SealSession)[0].result == SessionResult.SUCCESS

    def test_success_while_awaiting_last_sample(self):
        """Test success while AwaitingSampling(6) accepts 6 and completes."""
        ctx = tr.TransitionContext(SensorKind.ACCELEROMETER, frozenset(range(1, 6)))
        step = tr.step(AwaitingSampling(position=6), notice("Calibration successful"), ctx)

        assert isinstance(step.state, Completed)
        assert [a.position for a in effects_of(step, tr.AcceptPosition)] == [6]

    def test_no_completion_without_success_notice(self):
        """Test no other event produces Completed."""
        ctx = tr.TransitionContext(SensorKind.ACCELEROMETER, frozenset(range(1, 7)))
        events = [
            ack(MAV_CMD_ACCELCAL_VEHICLE_POS),
            ack(MAV_CMD_PREFLIGHT_CALIBRATION),
            notice("Place vehicle level"),
            notice("50%"),
            tr.LinkLost(),
            tr.ConfirmRequested(),
        ]
        for state in (AwaitingSampling(position=6), PositionAccepted(position=6), AwaitingInstruction()):
            for event in events:
                assert not isinstance(tr.step(state, event, ctx).state, Completed)

    def test_compass_progress_then_success(self):
        """Test compass progress updates and completes on success."""
        step = tr.step(Rotating(0), notice("Mag(0) 37%"), COMPASS)
        assert step.state == Rotating(37)

        assert not tr.step(Rotating(37), notice("Mag(0) 37%"), COMPASS).handled
        assert isinstance(tr.step(Rotating(37), notice("Calibration successful"), COMPASS).state, Completed)

    def test_failure_notice(self):
        """Test a failure notice fails from any post-start state."""
        for state in (AwaitingInstruction(), AwaitingSampling(position=3), HoldingStill()):
            step = tr.step(state, notice("Calibration FAILED", severity=2), ACCEL)
            assert isinstance(step.state, Failed)
            assert step.state.reason == "Calibration FAILED"


class TestTerminal:
    """Test cancel, link loss and terminal absorption."""

    def test_cancel_from_any_active_state(self):
        """Test cancel wins from every non-terminal, non-idle state."""
        for state in (AwaitingAcknowledgement(), AwaitingSampling(position=2), Rotating(40), HoldingStill()):
            step = tr.step(state, tr.CancelRequested(), ACCEL)
            assert isinstance(step.state, Cancelled)
            assert effects_of(step, tr.SendCommand) == []

    def test_cancel_notifies_firmware_when_configured(self):
        """Test AbortCalibration is sent only when enabled."""
        ctx = tr.TransitionContext(SensorKind.ACCELEROMETER, notify_firmware_on_cancel=True)
        step = tr.step(AwaitingSampling(position=1), tr.CancelRequested(), ctx)

        assert tr.SendCommand(AbortCalibration()) in step.effects
        assert AbortCalibration().params() == (0.0,) * 7

    def test_cancel_idle_ignored(self):
        """Test cancel with nothing running is ignored."""
        assert not tr.step(Idle(), tr.CancelRequested(), ACCEL).handled

    def test_link_lost_times_out(self):
        """Test link loss ends the session as timed out."""
        step = tr.step(AwaitingSampling(position=5), tr.LinkLost("no heartbeat"), ACCEL)

        assert step.state == TimedOut(reason="no heartbeat")
        assert effects_of(step, tr.SealSession)[0].result == SessionResult.TIMED_OUT

    @pytest.mark.parametrize("state", [Completed(), Failed("x"), Rejected("x"), TimedOut("x"), Cancelled()])
    def test_terminal_states_absorb(self, state):
        """Test nothing leaves a terminal state."""
        for event in (tr.CancelRequested(), notice("Place vehicle level"), ack(MAV_CMD_ACCELCAL_VEHICLE_POS)):
            step = tr.step(state, event, ACCEL)
            assert not step.handled
            assert step.state is state
            assert step.state.tag in {
                StateTag.COMPLETED, StateTag.FAILED, StateTag.REJECTED, StateTag.TIMED_OUT, StateTag.CANCELLED
            }


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
