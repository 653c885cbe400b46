"""Exceptions raised by the product import engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass


class ImportEngineError(Exception):
    """Base class for import engine failures."""


class JobNotFoundError(ImportEngineError):
    pass


class InvalidTransitionError(ImportEngineError):
    """A status change that would move a job backwards."""


class FatalImportError(ImportEngineError):
    """Job-level failure: the whole import is marked failed."""


class EmptyFileError(FatalImportError):
    pass


class ColumnMappingError(FatalImportError):
    pass


class CsvFormatError(FatalImportError):
    pass


class BlobMissingError(FatalImportError):
    """The job has no usable blob to read from."""


class MappingValidationError(ValueError):
    """A column mapping violates the rules for saving it."""


class RowValidationError(ValueError):
    """A single data row cannot be imported."""


@dataclass(frozen=True)
class RowError:
    row: int
    error: str

    def to_dict(self) -> dict:
        return asdict(self)
