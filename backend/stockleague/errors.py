from enum import Enum


class ErrorCode(str, Enum):
    VALIDATION = "ValidationError"
    LOOKUP_FAILED = "LookupFailed"
    CREATION_FAILED = "CreationFailed"
    INSERT_FAILED = "InsertFailed"
    UPDATE_FAILED = "UpdateFailed"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    OWNERSHIP_MISMATCH = "OwnershipMismatch"
    PARTIAL_FAILURE = "PartialFailure"
    INVALID_TIME_RANGE = "InvalidTimeRange"
    INVALID_DRAFT_ROUNDS = "InvalidDraftRounds"
    NO_IDENTITY_RETURNED = "NoIdentityReturned"
    NOT_IMPLEMENTED = "NotImplemented"


class LedgerError(Exception):
    """A workflow step failed; `code` says which kind of failure it was."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"LedgerError({self.code.value}, {self.message!r})"
