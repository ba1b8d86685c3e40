class CurationError(Exception):
    """Base class for pipeline failures surfaced to callers."""


class InvalidFormat(CurationError):
    """User-entered identifier does not match the expected shape."""

    def __init__(self, raw: str, expected: str):
        self.raw = raw
        self.expected = expected
        super().__init__(f"Invalid format: {raw!r}. Expected {expected}")


class NotFound(CurationError):
    """Identifier is well formed but the source has no such record."""


class DuplicateEntry(NotFound):
    """Record is already part of the curated collection."""

    def __init__(self, external_id: str):
        self.external_id = external_id
        super().__init__(f"{external_id} is already in your collection")


class SourceError(CurationError):
    """Transport or parse failure after the fallback path was exhausted."""


class NormalizationError(SourceError):
    """Raw payload cannot be mapped to a canonical record."""
