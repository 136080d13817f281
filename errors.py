class LedgerError(Exception):
    """Base class for every failure the engine surfaces to its caller"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

class ValidationError(LedgerError):
    """Input was rejected before anything was written"""

class NotFoundError(LedgerError):
    """A referenced expense, group or user does not exist"""

class StorageError(LedgerError):
    """The record store failed; the unit of work was rolled back"""

class ConflictError(LedgerError):
    """The write would duplicate an existing record"""
