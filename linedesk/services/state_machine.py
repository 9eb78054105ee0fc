from enum import Enum


class IntakePhase(str, Enum):
    AWAITING_ORDER = "awaiting_order"
    AWAITING_PROOF = "awaiting_proof"
    COMPLETED = "completed"


VALID_TRANSITIONS = {
    IntakePhase.AWAITING_ORDER: [IntakePhase.AWAITING_PROOF],
    IntakePhase.AWAITING_PROOF: [IntakePhase.COMPLETED],
    IntakePhase.COMPLETED: [],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_phase: IntakePhase, to_phase: IntakePhase):
        self.from_phase = from_phase
        self.to_phase = to_phase
        super().__init__(f"Invalid transition: {from_phase.value} -> {to_phase.value}")


def can_transition(from_phase: IntakePhase, to_phase: IntakePhase) -> bool:
    """Forward moves only. Going back is a reset, not a transition."""
    allowed = VALID_TRANSITIONS.get(from_phase, [])
    return to_phase in allowed


def transition(from_phase: IntakePhase, to_phase: IntakePhase) -> IntakePhase:
    """Perform phase transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_phase, to_phase):
        raise InvalidTransitionError(from_phase, to_phase)
    return to_phase


def accept_order(current_phase: IntakePhase) -> IntakePhase:
    return transition(current_phase, IntakePhase.AWAITING_PROOF)


def accept_proof(current_phase: IntakePhase) -> IntakePhase:
    return transition(current_phase, IntakePhase.COMPLETED)
