from __future__ import annotations


class NotAuthenticatedError(Exception):
    """No learner identity accompanied a personal-data operation."""


class NotFoundError(ValueError):
    """A learning record, vocabulary item or exercise is missing or not owned by the caller."""


class ValidationError(ValueError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message
