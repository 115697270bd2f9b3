import pytest

from app.core.exceptions import InvalidTransitionError, StepOrderError, ValidationError
from app.domain.procedure_state import (
    ProcedureStatus,
    StepName,
    StepStatus,
    all_steps_completed,
    assert_procedure_transition,
    assert_step_update,
    is_noop_terminal_write,
    parse_step_name,
    parse_step_status,
)

ADMISSION = StepName.ADMISSION_REQUEST
VISA = StepName.VISA_REQUEST
TRAVEL = StepName.TRAVEL_PREPARATION


def statuses(admission=StepStatus.PENDING, visa=StepStatus.PENDING, travel=StepStatus.PENDING):
    return {ADMISSION: admission, VISA: visa, TRAVEL: travel}


def test_unknown_step_name_and_status():
    with pytest.raises(ValidationError):
        parse_step_name("passport")
    with pytest.raises(ValidationError):
        parse_step_status("done")
    assert parse_step_name("visa_request") is VISA


class TestOrderGate:
    def test_visa_blocked_until_admission_completed(self):
        with pytest.raises(StepOrderError) as exc:
            assert_step_update(VISA, StepStatus.IN_PROGRESS, statuses())
        assert exc.value.blocking_step == ADMISSION.label
        assert ADMISSION.label in exc.value.detail

    def test_visa_allowed_once_admission_completed(self):
        assert_step_update(VISA, StepStatus.IN_PROGRESS, statuses(admission=StepStatus.COMPLETED))

    @pytest.mark.parametrize("visa", [StepStatus.PENDING, StepStatus.IN_PROGRESS, StepStatus.REJECTED])
    def test_travel_blocked_until_visa_completed(self, visa):
        with pytest.raises(StepOrderError) as exc:
            assert_step_update(
                TRAVEL, StepStatus.IN_PROGRESS, statuses(admission=StepStatus.COMPLETED, visa=visa)
            )
        assert exc.value.blocking_step == VISA.label

    def test_admission_has_no_prerequisite(self):
        assert_step_update(ADMISSION, StepStatus.COMPLETED, statuses())


class TestTerminalSteps:
    @pytest.mark.parametrize(
        "terminal", [StepStatus.COMPLETED, StepStatus.REJECTED, StepStatus.CANCELLED]
    )
    def test_different_status_rejected(self, terminal):
        with pytest.raises(InvalidTransitionError):
            assert_step_update(ADMISSION, StepStatus.IN_PROGRESS, statuses(admission=terminal))

    def test_same_status_is_noop(self):
        assert is_noop_terminal_write(StepStatus.COMPLETED, StepStatus.COMPLETED)
        assert not is_noop_terminal_write(StepStatus.IN_PROGRESS, StepStatus.IN_PROGRESS)
        assert not is_noop_terminal_write(StepStatus.COMPLETED, StepStatus.REJECTED)

    def test_terminal_check_runs_before_order_gate(self):
        # Visa cancelled while admission still pending: immutability wins
        with pytest.raises(InvalidTransitionError):
            assert_step_update(VISA, StepStatus.IN_PROGRESS, statuses(visa=StepStatus.CANCELLED))


class TestStepTransitions:
    def test_in_progress_cannot_go_back_to_pending(self):
        with pytest.raises(InvalidTransitionError):
            assert_step_update(ADMISSION, StepStatus.PENDING, statuses(admission=StepStatus.IN_PROGRESS))

    def test_rejection_needs_reason(self):
        with pytest.raises(ValidationError):
            assert_step_update(ADMISSION, StepStatus.REJECTED, statuses(), reason="   ")
        assert_step_update(ADMISSION, StepStatus.REJECTED, statuses(), reason="Dossier incomplet")


class TestProcedureStatus:
    def test_only_in_progress_moves(self):
        assert_procedure_transition("in_progress", "rejected")
        with pytest.raises(InvalidTransitionError):
            assert_procedure_transition(ProcedureStatus.COMPLETED, ProcedureStatus.REJECTED)

    def test_all_steps_completed(self):
        done = StepStatus.COMPLETED
        assert all_steps_completed(statuses(done, done, done))
        assert not all_steps_completed(statuses(done, done, StepStatus.IN_PROGRESS))
