class DomainError(Exception):
    """Base class for domain exceptions."""
    code = "CLAIM_LEDGER_ERROR"


class ValidationError(DomainError):
    """Raised when domain validation fails."""
    code = "VALIDATION_FAILED"


class ExpiredError(ValidationError):
    """Raised when a ticket is redeemed after its expiry."""
    code = "EXPIRED"


class InvalidSecretError(ValidationError):
    """Raised when the presented secret does not match the commitment."""
    code = "INVALID_SECRET"


class MalformedProofError(ValidationError):
    """Raised when a sibling path does not have one hash per tree level."""
    code = "MALFORMED_PROOF"


class AuthorizationError(DomainError):
    """Raised when the invoking principal is not the one the record names."""
    code = "UNAUTHORIZED"


class StateError(DomainError):
    """Raised when a record is not in a state that permits the operation."""
    code = "INVALID_STATE"


class EventInactiveError(StateError):
    code = "EVENT_INACTIVE"


class CapacityReachedError(StateError):
    code = "CAPACITY_REACHED"


class AlreadyClaimedError(StateError):
    code = "ALREADY_CLAIMED"


class AccumulatorFullError(StateError):
    code = "ACCUMULATOR_FULL"


class IntegrityError(DomainError):
    """Raised by strict verification helpers when a proof does not reproduce the root."""
    code = "INTEGRITY_FAILURE"


class NotFoundError(DomainError):
    """Raised when a resource is not found."""
    code = "NOT_FOUND"


class ConflictError(DomainError):
    """Raised when there is a conflict (e.g., duplicate ID)."""
    code = "CONFLICT"
