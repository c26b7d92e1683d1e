"""Tests for state machine validation."""
import pytest
from fieldsync_core.models import TaskStatus
from fieldsync_core.state_machine import (
    is_transition_valid,
    validate_transition,
    StateTransitionError,
    get_allowed_transitions,
    sources_for,
    TERMINAL_STATUSES,
)


class TestStateTransitions:
    """Test state machine transition validation."""

    def test_valid_forward_transitions(self):
        """Test that the happy path is allowed."""
        # Pending → Assigned
        assert is_transition_valid(TaskStatus.PENDING, TaskStatus.ASSIGNED)
        validate_transition(TaskStatus.PENDING, TaskStatus.ASSIGNED)  # Should not raise

        # Assigned → In Progress
        assert is_transition_valid(TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS)
        validate_transition(TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS)

        # In Progress → Completed
        assert is_transition_valid(TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED)
        validate_transition(TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED)

        # In Progress → Pending Review → Completed (review mode)
        validate_transition(TaskStatus.IN_PROGRESS, TaskStatus.PENDING_REVIEW)
        validate_transition(TaskStatus.PENDING_REVIEW, TaskStatus.COMPLETED)

    def test_sms_code_loop(self):
        """Test that the code exchange loops between in_progress and sms_requested."""
        validate_transition(TaskStatus.IN_PROGRESS, TaskStatus.SMS_REQUESTED)
        validate_transition(TaskStatus.SMS_REQUESTED, TaskStatus.IN_PROGRESS)
        # Completion does not wait for the code
        validate_transition(TaskStatus.SMS_REQUESTED, TaskStatus.COMPLETED)

    def test_valid_back_transitions(self):
        """Test that returning a task is allowed from every held status."""
        for status in (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, TaskStatus.SMS_REQUESTED):
            assert is_transition_valid(status, TaskStatus.PENDING)
            validate_transition(status, TaskStatus.PENDING)

    def test_noop_transitions_allowed(self):
        """Test that no-op transitions (same status) are always allowed."""
        for status in TaskStatus:
            assert is_transition_valid(status, status)
            validate_transition(status, status)  # Should not raise

    def test_invalid_accept_unassigned_task(self):
        """Test that accepting a task nobody was assigned is blocked."""
        assert not is_transition_valid(TaskStatus.PENDING, TaskStatus.IN_PROGRESS)

        with pytest.raises(StateTransitionError) as exc_info:
            validate_transition(TaskStatus.PENDING, TaskStatus.IN_PROGRESS)

        error = exc_info.value
        assert error.current_status == TaskStatus.PENDING
        assert error.requested_status == TaskStatus.IN_PROGRESS
        assert "must be assigned" in str(error).lower()

    def test_invalid_complete_before_accept(self):
        """Test that completing or requesting a code before accepting is blocked."""
        for target_status in (TaskStatus.COMPLETED, TaskStatus.SMS_REQUESTED):
            assert not is_transition_valid(TaskStatus.ASSIGNED, target_status)

            with pytest.raises(StateTransitionError) as exc_info:
                validate_transition(TaskStatus.ASSIGNED, target_status)

            assert "accept the task first" in str(exc_info.value).lower()

    def test_terminal_statuses_are_final(self):
        """Test that completed and cancelled tasks cannot change."""
        for terminal in TERMINAL_STATUSES:
            for status in TaskStatus:
                if status == terminal:
                    continue
                assert not is_transition_valid(terminal, status)

                with pytest.raises(StateTransitionError) as exc_info:
                    validate_transition(terminal, status)

                assert "terminal" in str(exc_info.value).lower()

    def test_cancel_from_any_open_status(self):
        """Test that every open status can be cancelled."""
        for status in TaskStatus:
            if status in TERMINAL_STATUSES:
                continue
            validate_transition(status, TaskStatus.CANCELLED)

    def test_get_allowed_transitions(self):
        """Test getting allowed transitions from each state."""
        # Pending can be assigned or cancelled (no-op excluded)
        assert set(get_allowed_transitions(TaskStatus.PENDING)) == {TaskStatus.ASSIGNED, TaskStatus.CANCELLED}

        allowed = get_allowed_transitions(TaskStatus.ASSIGNED)
        assert set(allowed) == {TaskStatus.IN_PROGRESS, TaskStatus.PENDING, TaskStatus.CANCELLED}

        # Terminal statuses have no allowed transitions (no-op excluded)
        assert get_allowed_transitions(TaskStatus.COMPLETED) == []
        assert get_allowed_transitions(TaskStatus.CANCELLED) == []

    def test_sources_for(self):
        """Test the source statuses used by conditional updates."""
        assert sources_for(TaskStatus.ASSIGNED) == [
            TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.SMS_REQUESTED,
        ]
        assert set(sources_for(TaskStatus.CANCELLED)) == {
            TaskStatus.PENDING,
            TaskStatus.ASSIGNED,
            TaskStatus.IN_PROGRESS,
            TaskStatus.SMS_REQUESTED,
            TaskStatus.PENDING_REVIEW,
        }

    def test_state_transition_error_attributes(self):
        """Test that StateTransitionError contains all required attributes."""
        with pytest.raises(StateTransitionError) as exc_info:
            validate_transition(TaskStatus.PENDING, TaskStatus.COMPLETED)

        error = exc_info.value
        assert hasattr(error, 'current_status')
        assert hasattr(error, 'requested_status')
        assert hasattr(error, 'allowed_transitions')
        assert error.current_status == TaskStatus.PENDING
        assert error.requested_status == TaskStatus.COMPLETED
        assert isinstance(error.allowed_transitions, list)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
