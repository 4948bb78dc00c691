"""Exceptions raised by the lending engine.

Every error belongs to one of five kinds that callers can react to:

    NotFound         referenced entity is absent
    InvalidState     entity is in the wrong lifecycle state for the operation
    Ineligible       business rule rejected the member
    Conflict         lost a race or storage conflict; safe to retry with fresh reads
    ValidationError  malformed input

None of them are fatal to the process.
"""
from typing import Optional


class LibraryError(Exception):
    """Base class for all engine errors."""

    kind: str = 'error'
    code: str = 'library_error'

    def __init__(self, message: str = '') -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> dict:
        return {
            'error': self.kind,
            'code': self.code,
            'message': self.message,
        }


# ==================== KINDS ====================

class NotFound(LibraryError):
    kind = 'not_found'
    code = 'not_found'


class InvalidState(LibraryError):
    kind = 'invalid_state'
    code = 'invalid_state'


class Ineligible(LibraryError):
    kind = 'ineligible'
    code = 'ineligible'


class Conflict(LibraryError):
    kind = 'conflict'
    code = 'conflict'


class ValidationError(LibraryError):
    kind = 'validation_error'
    code = 'validation_error'


# ==================== NOT FOUND ====================

class CopyNotFound(NotFound):
    code = 'copy_not_found'


class MemberNotFound(NotFound):
    code = 'member_not_found'


class StaffNotFound(NotFound):
    code = 'staff_not_found'


class BookNotFound(NotFound):
    code = 'book_not_found'


class LoanNotFound(NotFound):
    code = 'loan_not_found'


class ReservationNotFound(NotFound):
    code = 'reservation_not_found'


class FineNotFound(NotFound):
    code = 'fine_not_found'


# ==================== INVALID STATE ====================

class AlreadyReturned(InvalidState):
    code = 'already_returned'


class NotPending(InvalidState):
    code = 'not_pending'


class InvalidCopyState(InvalidState):
    code = 'invalid_copy_state'


# ==================== INELIGIBLE ====================

class MemberIneligible(Ineligible):
    """Member may not borrow or reserve.

    ``reason`` is one of 'inactive', 'membership_expired', 'loan_limit'
    or 'outstanding_fines'.
    """

    code = 'member_ineligible'

    def __init__(self, message: str = '', reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['reason'] = self.reason
        return data


# ==================== CONFLICT ====================

class CopyUnavailable(Conflict):
    code = 'copy_unavailable'


class DuplicatePending(Conflict):
    code = 'duplicate_pending'


class DuplicateRecord(Conflict):
    code = 'duplicate_record'


class ConcurrencyConflict(Conflict):
    code = 'concurrency_conflict'


class AuditWriteError(Conflict):
    code = 'audit_write_failed'


# ==================== VALIDATION ====================

class OverPayment(ValidationError):
    code = 'over_payment'
