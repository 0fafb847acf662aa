import pytest

from extractor.services.state_machine import (
    InvalidTransitionError,
    UsageLogState,
    can_transition,
    fail,
    is_terminal,
    succeed,
    transition,
)


class TestValidTransitions:
    def test_pending_to_succeeded(self):
        result = transition(UsageLogState.PENDING, UsageLogState.SUCCEEDED)
        assert result == UsageLogState.SUCCEEDED

    def test_pending_to_failed(self):
        result = transition(UsageLogState.PENDING, UsageLogState.FAILED)
        assert result == UsageLogState.FAILED


class TestInvalidTransitions:
    def test_succeeded_cannot_fail(self):
        with pytest.raises(InvalidTransitionError):
            transition(UsageLogState.SUCCEEDED, UsageLogState.FAILED)

    def test_failed_cannot_succeed(self):
        with pytest.raises(InvalidTransitionError):
            transition(UsageLogState.FAILED, UsageLogState.SUCCEEDED)

    def test_same_state(self):
        with pytest.raises(InvalidTransitionError):
            transition(UsageLogState.PENDING, UsageLogState.PENDING)

    def test_error_message_names_states(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            succeed(UsageLogState.FAILED)
        assert "failed -> succeeded" in str(exc_info.value)


class TestHelperFunctions:
    def test_succeed(self):
        assert succeed(UsageLogState.PENDING) == UsageLogState.SUCCEEDED

    def test_fail(self):
        assert fail(UsageLogState.PENDING) == UsageLogState.FAILED

    def test_finalize_twice_fails(self):
        state = succeed(UsageLogState.PENDING)
        with pytest.raises(InvalidTransitionError):
            fail(state)


class TestCanTransition:
    def test_valid_transition_returns_true(self):
        assert can_transition(UsageLogState.PENDING, UsageLogState.SUCCEEDED) is True

    def test_invalid_transition_returns_false(self):
        assert can_transition(UsageLogState.SUCCEEDED, UsageLogState.PENDING) is False


class TestTerminalStates:
    def test_pending_is_not_terminal(self):
        assert is_terminal(UsageLogState.PENDING) is False

    def test_succeeded_and_failed_are_terminal(self):
        assert is_terminal(UsageLogState.SUCCEEDED) is True
        assert is_terminal(UsageLogState.FAILED) is True
