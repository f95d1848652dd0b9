"""Domain errors raised by the attempt, scoring and session layers.

Routes translate these into ``HTTPException``; the client session raises
them straight to the UI layer.
"""


class AttemptError(Exception):
    """Base class for every attempt-related failure."""


class AnswerValidationError(AttemptError):
    """An answer has the wrong shape for its question (e.g. two picks on a
    single-choice question). Rejected before grading."""


class AttemptIntegrityError(AttemptError):
    """The request contradicts stored state; never partially applied."""


class UnknownQuestionError(AttemptIntegrityError):
    def __init__(self, question_id: str) -> None:
        super().__init__(f"Question {question_id} is not part of this test")
        self.question_id = question_id


class AttemptTerminalError(AttemptIntegrityError):
    def __init__(self, attempt_id: str, status: str | None = None) -> None:
        detail = f"Attempt {attempt_id} is already terminal"
        if status:
            detail += f" ({status})"
        super().__init__(detail)
        self.attempt_id = attempt_id
        self.status = status


class AttemptLimitError(AttemptError):
    """The student has used every allowed attempt for the test."""


class PersistenceError(AttemptError):
    """Auto-save or final submit could not reach the attempt service."""


class AttemptAccessError(AttemptError):
    """The attempt is gone or the caller may no longer touch it (expired
    token, deleted attempt). Retrying cannot help."""
