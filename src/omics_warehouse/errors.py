"""Exception types raised by the loaders.

Errors defined here are fatal to the document or file being processed.
Recoverable per-entry problems are reported as ``SkippedEntry`` values
instead (see ``omics_warehouse.resolution.model``).
"""


class OmicsLoaderError(Exception):
    """Base class for loader errors."""


class MetadataError(OmicsLoaderError):
    """A metadata document is missing a hard-required section or reference."""

    def __init__(self, message: str, experiment: str = "") -> None:
        self.experiment = experiment
        if experiment:
            message = f"{experiment}: {message}"
        super().__init__(message)


class TableFormatError(OmicsLoaderError):
    """A results table has an unrecognized header layout or malformed rows."""

    def __init__(self, message: str, source: str = "") -> None:
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__(message)


class DataIntegrityError(OmicsLoaderError):
    """Input data violates a uniqueness constraint (e.g. duplicate protein group)."""


class ResolverUnavailableError(OmicsLoaderError):
    """The external identifier resolver could not be reached or loaded.

    Distinct from an identifier that simply has no match.
    """
