"""Error taxonomy for circulation operations.

Every rejected operation raises one of these. They subclass ``ValueError``
so callers that only distinguish "bad request" from "crash" keep working.
"""


class CirculationError(ValueError):
    """Base class for all caller-visible circulation failures."""


class NotFoundError(CirculationError):
    """A referenced book, borrower or loan does not exist."""

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class ConflictError(CirculationError):
    """The operation clashes with current state.

    Raised for duplicate emails or ISBNs, checking out a borrowed book and
    returning a loan that is already closed.
    """


class ValidationError(CirculationError):
    """Input is malformed, e.g. a date range whose start is after its end."""
