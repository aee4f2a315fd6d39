"""Exceptions raised by the scanning and extraction services."""


class ScanError(Exception):
    """Base for all surfaced scan/extraction failures."""


class InvalidInputError(ScanError):
    """Caller mistake: missing file reference, schema, or bad page number."""


class FileRetrievalError(ScanError):
    """The referenced upload could not be fetched, so no result is possible."""
