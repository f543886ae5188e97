"""Failure taxonomy shared by every engine component.

Nothing here is fatal to the process: validation failures are fixed by the
user, conflicts by retrying with fresh state, collaborator failures by
retrying once the collaborator recovers.
"""


class KnowflowError(Exception):
    """Base class for all engine failures."""


class ValidationFailure(KnowflowError):
    """Caller input was rejected; no state was mutated."""


class NothingSelected(ValidationFailure):
    def __init__(self) -> None:
        super().__init__("nothing selected: select at least one draft before committing")


class InvalidTransition(ValidationFailure):
    def __init__(self, operation: str, state: str) -> None:
        super().__init__(f"{operation} is not allowed while session is {state}")
        self.operation = operation
        self.state = state


class DirectionNotFound(ValidationFailure):
    def __init__(self, direction_id: str) -> None:
        super().__init__(f"direction not found: {direction_id}")
        self.direction_id = direction_id


class ConflictFailure(KnowflowError):
    """A concurrent update won; retry against fresh state."""


class SessionBusy(ConflictFailure):
    def __init__(self) -> None:
        super().__init__("session busy: another transition is in flight")


class CollaboratorFailure(KnowflowError):
    """A persistence or delivery collaborator failed; state was rolled back."""
