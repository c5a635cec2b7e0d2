"""Error taxonomy for the CivicStake core.

Every `CivicError` is a recoverable, caller-facing rejection carrying a
stable code and enough context (entity id, attempted operation) to render a
user message. `InvariantViolation` is not one of them: it means the locking
discipline failed and is surfaced to callers as a generic internal error.
"""

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


class CivicError(Exception):
    """Base class for validation errors returned to the caller."""

    code = "civic_error"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, **self.context}


class InvalidAmount(CivicError):
    code = "invalid_amount"


class InsufficientFunds(CivicError):
    code = "insufficient_funds"


class InvalidTransition(CivicError):
    code = "invalid_transition"
    status_code = 409


class QuestionNotOpen(InvalidTransition):
    code = "question_not_open"
    status_code = 409


class AlreadyAnswered(CivicError):
    code = "already_answered"
    status_code = 409


class AlreadyFinalized(CivicError):
    code = "already_finalized"
    status_code = 409


class AlreadySettled(CivicError):
    code = "already_settled"
    status_code = 409


class NotEligible(CivicError):
    code = "not_eligible"
    status_code = 403


class VotingClosed(CivicError):
    code = "voting_closed"
    status_code = 409


class UnknownUser(CivicError):
    code = "unknown_user"
    status_code = 404


class UnknownPolitician(CivicError):
    code = "unknown_politician"
    status_code = 404


class UnknownQuestion(CivicError):
    code = "unknown_question"
    status_code = 404


class UnknownAnswer(CivicError):
    code = "unknown_answer"
    status_code = 404


class InvariantViolation(Exception):
    """A conservation or exactly-once invariant was found broken.

    Logged at CRITICAL on construction; callers only ever see a generic
    internal error.
    """

    def __init__(self, message: str, entity_id: Optional[str] = None):
        super().__init__(message)
        self.entity_id = entity_id
        logger.critical("Invariant violation (%s): %s", entity_id, message)
