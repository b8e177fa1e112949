"""
habitloop.errors — Domain Error Taxonomy
=========================================

Every expected failure of a core operation is a :class:`DomainError`
subclass.  Callers (the API layer, tests) catch these and decide what to
show the user; the core never turns them into silent no-ops.

:class:`StoreUnavailable` is the one non-domain failure: transport or
persistence trouble, surfaced to the caller and never retried here.
"""

from __future__ import annotations


class HabitLoopError(Exception):
    """Base class for all errors raised by the core."""

    code: str = "error"
    status_code: int = 500


class DomainError(HabitLoopError):
    """An expected, recoverable failure of a core operation."""

    status_code = 400


class AlreadyMember(DomainError):
    code = "already_member"
    status_code = 409


class NotMember(DomainError):
    code = "not_member"
    status_code = 403


class ChallengeNotFound(DomainError):
    code = "challenge_not_found"
    status_code = 404


class DuplicateCompletion(DomainError):
    code = "duplicate_completion"
    status_code = 409


class MissingProof(DomainError):
    code = "missing_proof"
    status_code = 422


class InvalidAmount(DomainError):
    code = "invalid_amount"
    status_code = 422


class InsufficientBalance(DomainError):
    code = "insufficient_balance"
    status_code = 409


class LedgerContention(DomainError):
    """The balance kept changing underneath a redemption; try again."""

    code = "ledger_contention"
    status_code = 409


class InvalidInput(DomainError):
    code = "invalid_input"
    status_code = 422


class EmptyMessage(DomainError):
    code = "empty_message"
    status_code = 422


class StoreUnavailable(HabitLoopError):
    code = "store_unavailable"
    status_code = 503
