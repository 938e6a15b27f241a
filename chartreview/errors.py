"""Error taxonomy for the review engine."""


class ReviewError(Exception):
    """Base class for every error raised by the review engine"""


class ValidationError(ReviewError):
    """Outcome input is malformed (user-correctable, nothing was mutated)"""


class NotFoundError(ReviewError):
    """Unknown review session, conversation or analysis"""


class AlreadyExistsError(ReviewError):
    """A review session already exists for the source"""


class IncompleteDataError(ReviewError):
    """Completion attempted while some predictions still lack an outcome"""

    def __init__(self, missing: int):
        self.missing = missing
        super().__init__(f"{missing} prediction(s) still have no actual outcome")


class CollaboratorError(ReviewError):
    """Vision or chat call failed"""


class ReviewStateError(ReviewError):
    """Transition not allowed in the session's current state"""


class ConcurrencyError(ReviewError):
    """Session was modified by another writer since it was read"""
