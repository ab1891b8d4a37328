"""
Exceptions raised by the intake pipeline.

Malformed cells never raise; they degrade to defaults and are reported as
normalization notes. Only structural problems with an upload abort ingestion.
"""

from __future__ import annotations

from typing import List


class IngestionError(Exception):
    """An upload could not be turned into records at all."""


class UnsupportedFileError(IngestionError):
    pass


class MissingColumnsError(IngestionError):
    def __init__(self, entity_kind: str, missing: List[str]):
        self.entity_kind = entity_kind
        self.missing = list(missing)
        super().__init__(f"{entity_kind} file is missing required columns: {', '.join(self.missing)}")


class DatasetNotFoundError(KeyError):
    pass


class EntityNotFoundError(KeyError):
    pass


class ExportBlockedError(Exception):
    def __init__(self, total_errors: int):
        self.total_errors = total_errors
        super().__init__(f"Cannot export data with {total_errors} validation error(s); fix all errors first")


class EnrichmentError(Exception):
    """The remote suggestion service was unreachable or answered garbage."""
