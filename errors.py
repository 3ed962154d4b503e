"""
errors.py
Error kinds raised by the data source and the member cache.
"""

from __future__ import annotations


class GymError(RuntimeError):
    """Base class for every error the gym core raises."""


class RemoteUnavailable(GymError):
    """Raised when the data source cannot be reached or a query fails."""


class NotFound(GymError):
    """Raised when a mutation targets a record that does not exist."""


class ValidationError(GymError):
    """Raised before any write when input is malformed.

    ``errors`` holds one human readable message per offending field.
    """

    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class DuplicateContact(ValidationError):
    """Raised when registering a contact number that is already in use."""

    def __init__(self, contact_number: str):
        self.contact_number = contact_number
        super().__init__(f"Contact number {contact_number} is already registered.")
