from enum import Enum


class UsageLogState(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


VALID_TRANSITIONS = {
    UsageLogState.PENDING: [UsageLogState.SUCCEEDED, UsageLogState.FAILED],
    UsageLogState.SUCCEEDED: [],
    UsageLogState.FAILED: [],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: UsageLogState, to_state: UsageLogState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: UsageLogState, to_state: UsageLogState) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: UsageLogState, to_state: UsageLogState) -> UsageLogState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def succeed(current_state: UsageLogState) -> UsageLogState:
    """Finalize an attempt as succeeded."""
    return transition(current_state, UsageLogState.SUCCEEDED)


def fail(current_state: UsageLogState) -> UsageLogState:
    """Finalize an attempt as failed."""
    return transition(current_state, UsageLogState.FAILED)


def is_terminal(state: UsageLogState) -> bool:
    return not VALID_TRANSITIONS.get(state)
