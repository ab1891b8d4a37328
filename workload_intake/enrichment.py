"""
Suggestion enrichment.

Two interchangeable providers: a local heuristic one that mirrors the fix
resolver, and a remote one that asks an external service for richer
explanations and falls back to the local answer whenever the service is
slow, down or answers garbage. Which one runs is decided once, in
build_suggestion_provider().
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence

import requests
from pydantic import ValidationError

from .autofix import MANUAL_REVIEW, FixResolver
from .config import Settings
from .errors import EnrichmentError
from .models import Dataset, Diagnostic, FieldUpdate, Suggestion

logger = logging.getLogger(__name__)

AUTO_FIX_CONFIDENCE = 0.8
MANUAL_CONFIDENCE = 0.3

EXPLANATIONS = {
    ("PriorityLevel", "out-of-range"): "Priority levels must be between 1 (lowest) and 5 (highest)",
    ("Duration", "below-minimum"): "Task duration must be at least 1 phase to be executable",
    ("MaxConcurrent", "below-minimum"): "A task must allow at least one concurrent assignment",
    ("MaxLoadPerPhase", "below-minimum"): "Workers must be able to handle at least 1 task per phase",
    ("MaxLoadPerPhase", "exceeds-availability"): "A worker cannot carry more load per phase than phases it is available in",
    ("AvailableSlots", "empty"): "A worker with no available phase can never be scheduled",
    ("ClientID", "duplicate"): "Duplicate IDs have no deterministic winner and need a manual decision",
    ("WorkerID", "duplicate"): "Duplicate IDs have no deterministic winner and need a manual decision",
    ("TaskID", "duplicate"): "Duplicate IDs have no deterministic winner and need a manual decision",
    ("PreferredPhases", "phase-saturation"): "Demand in this phase exceeds the combined load of available workers",
}


def _explain(diagnostic: Diagnostic) -> str:
    if diagnostic.defect.startswith("dangling-ref:"):
        return "Requested tasks must exist in the task list"
    if diagnostic.defect.startswith("missing-skill:"):
        return "Ensure required skills match available worker capabilities"
    return EXPLANATIONS.get((diagnostic.field, diagnostic.defect), "This finding requires manual inspection and correction")


def _describe(update: FieldUpdate, diagnostic: Diagnostic) -> str:
    if diagnostic.defect.startswith("dangling-ref:"):
        return f"Remove {diagnostic.defect.split(':', 1)[1]} from {update.field}"
    return f"Set {update.field} to {update.value}"


class SuggestionProvider(ABC):
    name = "abstract"

    @abstractmethod
    def enrich(self, diagnostics: Sequence[Diagnostic], dataset: Dataset) -> List[Suggestion]:
        """One suggestion per diagnostic, in diagnostic order."""


class LocalSuggestionProvider(SuggestionProvider):
    name = "local"

    def __init__(self, resolver: FixResolver):
        self.resolver = resolver

    def enrich(self, diagnostics: Sequence[Diagnostic], dataset: Dataset) -> List[Suggestion]:
        suggestions = []
        for diagnostic in diagnostics:
            update = self.resolver.resolve(diagnostic, dataset)
            if update is None:
                suggestions.append(Suggestion(
                    diagnostic_id=diagnostic.id,
                    suggested_fix=diagnostic.suggestion or MANUAL_REVIEW,
                    explanation=_explain(diagnostic),
                    confidence=MANUAL_CONFIDENCE,
                    auto_applicable=False,
                ))
                continue
            suggestions.append(Suggestion(
                diagnostic_id=diagnostic.id,
                suggested_fix=_describe(update, diagnostic),
                explanation=_explain(diagnostic),
                confidence=AUTO_FIX_CONFIDENCE,
                auto_applicable=True,
            ))
        return suggestions


class RemoteSuggestionProvider(SuggestionProvider):
    """
    Posts diagnostics to an external suggestion service.

    Requests carry at most `batch_size` diagnostics and time out after
    `timeout` seconds. A failed batch keeps the local suggestions for its
    diagnostics. A remote suggestion is only marked auto-applicable when the
    local resolver can actually apply it.
    """

    name = "remote"

    def __init__(
        self,
        url: str,
        fallback: LocalSuggestionProvider,
        api_key: str = "",
        timeout: float = 8.0,
        batch_size: int = 10,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.fallback = fallback
        self.api_key = api_key
        self.timeout = timeout
        self.batch_size = max(1, batch_size)
        self.session = session or requests.Session()

    def enrich(self, diagnostics: Sequence[Diagnostic], dataset: Dataset) -> List[Suggestion]:
        local = self.fallback.enrich(diagnostics, dataset)
        local_by_id = {s.diagnostic_id: s for s in local}
        snapshot = dataset.model_dump(mode="json", by_alias=True)

        remote: List[Suggestion] = []
        for start in range(0, len(diagnostics), self.batch_size):
            batch = diagnostics[start:start + self.batch_size]
            try:
                payload = self._post(batch, snapshot)
            except (requests.RequestException, EnrichmentError) as exc:
                logger.warning("suggestion service unavailable, using local suggestions: %s", exc)
                continue
            remote.extend(self._accept(payload, batch, local_by_id))

        return merge_suggestions(local, remote)

    def _post(self, batch: Sequence[Diagnostic], snapshot: Dict[str, Any]) -> Any:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        resp = self.session.post(
            self.url,
            json={
                "type": "validation-fix",
                "errors": [d.model_dump(mode="json") for d in batch],
                "dataState": snapshot,
            },
            headers=headers,
            timeout=self.timeout,
        )
        if resp.status_code != 200:
            raise EnrichmentError(f"suggestion service returned {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as exc:
            raise EnrichmentError("suggestion service returned non-JSON body") from exc

        # both {"success": true, "data": {"suggestions": [...]}} and {"suggestions": [...]}
        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            body = body["data"]
        if not isinstance(body, dict) or not isinstance(body.get("suggestions"), list):
            raise EnrichmentError("suggestion service response has no suggestions list")
        return body["suggestions"]

    def _accept(self, items: Iterable[Any], batch: Sequence[Diagnostic], local_by_id) -> List[Suggestion]:
        wanted = {d.id for d in batch}
        accepted = []
        for item in items:
            try:
                suggestion = Suggestion.model_validate(item)
            except ValidationError:
                logger.debug("dropping malformed remote suggestion")
                continue
            if suggestion.diagnostic_id not in wanted:
                continue
            local = local_by_id.get(suggestion.diagnostic_id)
            suggestion.auto_applicable = bool(suggestion.auto_applicable and local and local.auto_applicable)
            suggestion.source = self.name
            accepted.append(suggestion)
        return accepted


def merge_suggestions(base: Sequence[Suggestion], late: Iterable[Suggestion]) -> List[Suggestion]:
    """Overlay late-arriving suggestions onto `base` by diagnostic id, keeping base order."""
    late_by_id = {s.diagnostic_id: s for s in late}
    return [late_by_id.get(s.diagnostic_id, s) for s in base]


def build_suggestion_provider(settings: Settings, resolver: FixResolver) -> SuggestionProvider:
    local = LocalSuggestionProvider(resolver)
    if not settings.enrichment_configured:
        return local
    return RemoteSuggestionProvider(
        settings.enrichment_url,
        fallback=local,
        api_key=settings.enrichment_api_key,
        timeout=settings.enrichment_timeout,
        batch_size=settings.enrichment_batch,
    )
