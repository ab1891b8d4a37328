"""
In-memory editor sessions.

A Session owns one Dataset, its outstanding diagnostics and the latest
suggestions. Every mutation goes through the session lock: fixes and edits are
whole-field replacements, so two concurrent writers would otherwise silently
overwrite each other.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Dict, List, Optional, Tuple

from .autofix import FixResolver
from .errors import DatasetNotFoundError, EntityNotFoundError
from .models import Dataset, Diagnostic, EntityKind, FixResult, NormalizationNote, Suggestion
from .normalize import normalize_field
from .validate import entity_refs, validate_dataset

logger = logging.getLogger(__name__)


class Session:
    def __init__(self, dataset_id: str, dataset: Dataset, resolver: FixResolver):
        self.dataset_id = dataset_id
        self.dataset = dataset
        self.resolver = resolver
        self.diagnostics: List[Diagnostic] = []
        self.suggestions: List[Suggestion] = []
        self.enrichment_pending = False
        self.lock = threading.RLock()

    @property
    def overload_fixable(self) -> bool:
        return self.resolver.overload_policy != "none"

    def validate(self) -> List[Diagnostic]:
        with self.lock:
            self.diagnostics = validate_dataset(
                self.dataset.requesters,
                self.dataset.providers,
                self.dataset.work_units,
                overload_fixable=self.overload_fixable,
            )
            return list(self.diagnostics)

    def find(self, diagnostic_id: str) -> Diagnostic:
        with self.lock:
            for diagnostic in self.diagnostics:
                if diagnostic.id == diagnostic_id:
                    return diagnostic
        raise EntityNotFoundError(f"diagnostic not found: {diagnostic_id}")

    def fix(self, diagnostic_id: str) -> FixResult:
        with self.lock:
            result = self.resolver.apply(self.dataset, self.find(diagnostic_id), self.diagnostics)
            self.diagnostics = result.outstanding
            return result

    def fix_all(self) -> Tuple[List[FixResult], List[Diagnostic]]:
        """Apply every auto-fixable diagnostic, then re-validate from scratch."""
        with self.lock:
            results, _ = self.resolver.apply_all(self.dataset, self.diagnostics)
            return results, self.validate()

    def edit(self, kind: EntityKind, entity_id: str, changes: Dict[str, Any]) -> Tuple[Any, List[NormalizationNote]]:
        """
        Apply a user edit to the first record carrying `entity_id`.

        Values go through the same grammars as uploads. Unknown columns raise
        KeyError. Diagnostics are not recomputed; call validate().
        """
        with self.lock:
            records = self.dataset.collection(kind)
            row = next((i for i, ref in enumerate(entity_refs(records)) if ref.key == entity_id), None)
            if row is None:
                raise EntityNotFoundError(f"{kind.value} not found: {entity_id}")
            record = records[row]

            unknown = [column for column in changes if column not in record.COLUMNS]
            if unknown:
                raise KeyError(f"unknown column(s) for {kind.value}: {', '.join(unknown)}")

            notes = []
            for column, raw in changes.items():
                value, note = normalize_field(kind, column, raw)
                if note is not None:
                    note.row = row
                    notes.append(note)
                setattr(record, record.COLUMNS[column], value)
            return record, notes

    def set_suggestions(self, suggestions: List[Suggestion], pending: bool) -> None:
        with self.lock:
            self.suggestions = list(suggestions)
            self.enrichment_pending = pending


class DatasetStore:
    def __init__(self, resolver: FixResolver):
        self.resolver = resolver
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def create(self, dataset: Dataset, dataset_id: Optional[str] = None) -> Session:
        session = Session(dataset_id or uuid.uuid4().hex, dataset, self.resolver)
        session.validate()
        with self._lock:
            self._sessions[session.dataset_id] = session
        logger.info(
            "created dataset %s (%d requesters, %d providers, %d work units)",
            session.dataset_id,
            len(dataset.requesters),
            len(dataset.providers),
            len(dataset.work_units),
        )
        return session

    def get(self, dataset_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(dataset_id)
        if session is None:
            raise DatasetNotFoundError(dataset_id)
        return session
