"""
Competition error taxonomy.

Every rejection carries a stable ``code`` so callers (the HTTP layer, ops
tooling) can tell a closed window from missing funds from a duplicate.
Conditional updates that match nothing are not errors: they mean another
process already handled the transition, and services report them as
``None`` or a zero count.
"""


class CompetitionError(Exception):
    """Base class for all competition errors"""
    code = "competition_error"
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(CompetitionError):
    """Invalid request"""
    code = "validation_error"


class NotFoundError(CompetitionError):
    """Resource not found"""
    code = "not_found"
    status_code = 404


class EntryWindowClosed(ValidationError):
    """Entry window is closed"""
    code = "entry_window_closed"


class CompetitionClosed(ValidationError):
    """Competition is not accepting entries"""
    code = "competition_closed"


class InsufficientFunds(ValidationError):
    """Insufficient tokens"""
    code = "insufficient_funds"


class DuplicateEntry(ValidationError):
    """You already have an entry in this competition"""
    code = "duplicate_entry"


class DuplicateVote(ValidationError):
    """You already voted for this entry"""
    code = "duplicate_vote"


class VotingClosed(ValidationError):
    """Competition is not open for voting"""
    code = "voting_closed"


class EntryNotActive(ValidationError):
    """Cannot vote for cancelled entry"""
    code = "entry_not_active"


class EntryMismatch(ValidationError):
    """Entry does not belong to this competition"""
    code = "entry_mismatch"


class OwnEntryVote(ValidationError):
    """Cannot vote for your own entry"""
    code = "own_entry_vote"


class CancellationNotAllowed(ValidationError):
    """Cancellation is not allowed"""
    code = "cancellation_not_allowed"


class InvalidSchedule(ValidationError):
    """Competition times are inconsistent"""
    code = "invalid_schedule"
