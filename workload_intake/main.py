"""
HTTP surface: upload, inspect, fix, enrich and export datasets held in memory.

create_app() wires settings, the fix resolver and the suggestion provider
together; `app` is the default instance built from the environment.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, Body, FastAPI, File, HTTPException, Query, Response, UploadFile

from .autofix import FixResolver
from .config import Settings, configure_logging
from .enrichment import LocalSuggestionProvider, SuggestionProvider, build_suggestion_provider, merge_suggestions
from .errors import DatasetNotFoundError, EntityNotFoundError, ExportBlockedError, IngestionError
from .export import build_export, render_csv
from .ingest import read_table
from .models import (
    BusinessRule,
    Dataset,
    DatasetResponse,
    EditResponse,
    EntityKind,
    FixAllResponse,
    FixResult,
    HealthResponse,
    IngestResponse,
    PrioritizationProfile,
    PrioritizationWeights,
    StatusResponse,
    SuggestionsResponse,
    ValidationResponse,
)
from .normalize import normalize_rows
from .rules import PRIORITIZATION_PROFILES
from .store import DatasetStore, Session
from .validate import summarize

logger = logging.getLogger(__name__)

EXPORT_NAMES = {
    "clients": EntityKind.REQUESTER,
    "workers": EntityKind.PROVIDER,
    "tasks": EntityKind.WORK_UNIT,
}


def create_app(settings: Optional[Settings] = None, provider: Optional[SuggestionProvider] = None) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.log_level)

    resolver = FixResolver(settings.overload_fix_policy)
    store = DatasetStore(resolver)
    local_provider = LocalSuggestionProvider(resolver)
    provider = provider or build_suggestion_provider(settings, resolver)

    app = FastAPI(
        title="workload-intake",
        description="Normalization, validation and auto-fix for requester / provider / work unit sheets",
        version="0.1.0",
    )
    app.state.settings = settings
    app.state.store = store

    def get_session(dataset_id: str) -> Session:
        try:
            return store.get(dataset_id)
        except DatasetNotFoundError as e:
            raise HTTPException(status_code=404, detail="Dataset not found") from e

    @app.get("/health", response_model=HealthResponse)
    def health():
        return {"ok": True}

    @app.get("/status", response_model=StatusResponse)
    def status():
        return {
            "enrichment_configured": settings.enrichment_configured,
            "enrichment_provider": provider.name,
            "overload_fix_policy": settings.overload_fix_policy,
        }

    @app.get("/profiles", response_model=List[PrioritizationProfile])
    def profiles():
        return PRIORITIZATION_PROFILES

    @app.post("/datasets", response_model=IngestResponse)
    async def ingest(
        clients: Optional[UploadFile] = File(None),
        workers: Optional[UploadFile] = File(None),
        tasks: Optional[UploadFile] = File(None),
    ):
        uploads = {
            EntityKind.REQUESTER: clients,
            EntityKind.PROVIDER: workers,
            EntityKind.WORK_UNIT: tasks,
        }
        if not any(uploads.values()):
            raise HTTPException(status_code=422, detail="Please select at least one file to process")

        collections: Dict[EntityKind, list] = {kind: [] for kind in uploads}
        notes = []
        try:
            for kind, upload in uploads.items():
                if upload is None:
                    continue
                table = read_table(upload.filename or "", await upload.read(), kind)
                records, record_notes = normalize_rows(kind, table.header, table.rows)
                collections[kind] = records
                notes.extend(table.notes)
                notes.extend(record_notes)
        except IngestionError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e

        session = store.create(Dataset(
            requesters=collections[EntityKind.REQUESTER],
            providers=collections[EntityKind.PROVIDER],
            work_units=collections[EntityKind.WORK_UNIT],
        ))
        return {
            "dataset_id": session.dataset_id,
            "counts": {kind.value: len(records) for kind, records in collections.items()},
            "notes": notes,
            "summary": summarize(session.diagnostics),
            "diagnostics": session.diagnostics,
        }

    @app.get("/datasets/{dataset_id}", response_model=DatasetResponse)
    def get_dataset(dataset_id: str):
        session = get_session(dataset_id)
        with session.lock:
            return {
                "dataset_id": dataset_id,
                "requesters": session.dataset.requesters,
                "providers": session.dataset.providers,
                "work_units": session.dataset.work_units,
                "summary": summarize(session.diagnostics),
                "diagnostics": session.diagnostics,
            }

    @app.post("/datasets/{dataset_id}/validate", response_model=ValidationResponse)
    def validate(dataset_id: str):
        diagnostics = get_session(dataset_id).validate()
        return {"dataset_id": dataset_id, "summary": summarize(diagnostics), "diagnostics": diagnostics}

    @app.patch("/datasets/{dataset_id}/{kind}/{entity_id}", response_model=EditResponse)
    def edit(dataset_id: str, kind: EntityKind, entity_id: str, changes: Dict[str, Any] = Body(...)):
        session = get_session(dataset_id)
        try:
            record, notes = session.edit(kind, entity_id, changes)
        except EntityNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except KeyError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        return {"entity_kind": kind, "record": record.model_dump(mode="json", by_alias=True), "notes": notes}

    @app.post("/datasets/{dataset_id}/fixes/{diagnostic_id:path}", response_model=FixResult)
    def fix(dataset_id: str, diagnostic_id: str):
        session = get_session(dataset_id)
        try:
            return session.fix(diagnostic_id)
        except EntityNotFoundError as e:
            raise HTTPException(status_code=404, detail="Diagnostic not found") from e

    @app.post("/datasets/{dataset_id}/fixes", response_model=FixAllResponse)
    def fix_all(dataset_id: str):
        session = get_session(dataset_id)
        results, diagnostics = session.fix_all()
        applied = sum(1 for r in results if r.applied)
        return {
            "dataset_id": dataset_id,
            "applied": applied,
            "declined": len(results) - applied,
            "results": results,
            "summary": summarize(diagnostics),
            "diagnostics": diagnostics,
        }

    def enrich_later(session: Session, snapshot: Dataset, diagnostics) -> None:
        late = provider.enrich(diagnostics, snapshot)
        with session.lock:
            session.set_suggestions(merge_suggestions(session.suggestions, late), pending=False)
        logger.info("merged %d enriched suggestion(s) into dataset %s", len(late), session.dataset_id)

    @app.post("/datasets/{dataset_id}/suggestions", response_model=SuggestionsResponse)
    def suggest(dataset_id: str, background_tasks: BackgroundTasks):
        session = get_session(dataset_id)
        with session.lock:
            diagnostics = list(session.diagnostics)
            snapshot = session.dataset.model_copy(deep=True)
        local = local_provider.enrich(diagnostics, snapshot)
        pending = not isinstance(provider, LocalSuggestionProvider) and bool(diagnostics)
        session.set_suggestions(local, pending=pending)
        if pending:
            background_tasks.add_task(enrich_later, session, snapshot, diagnostics)
        return {
            "dataset_id": dataset_id,
            "suggestions": local,
            "response": f"Generated {len(local)} fix suggestions using rule-based analysis",
            "pending": pending,
        }

    @app.get("/datasets/{dataset_id}/suggestions", response_model=SuggestionsResponse)
    def get_suggestions(dataset_id: str):
        session = get_session(dataset_id)
        with session.lock:
            return {
                "dataset_id": dataset_id,
                "suggestions": session.suggestions,
                "response": f"{len(session.suggestions)} fix suggestion(s)",
                "pending": session.enrichment_pending,
            }

    @app.put("/datasets/{dataset_id}/weights", response_model=PrioritizationWeights)
    def set_weights(dataset_id: str, weights: PrioritizationWeights, normalize: bool = Query(False)):
        session = get_session(dataset_id)
        with session.lock:
            session.dataset.weights = weights.normalized() if normalize else weights
            return session.dataset.weights

    @app.put("/datasets/{dataset_id}/rules", response_model=List[BusinessRule])
    def set_rules(dataset_id: str, rules: List[BusinessRule]):
        session = get_session(dataset_id)
        with session.lock:
            session.dataset.rules = list(rules)
            return session.dataset.rules

    @app.get("/datasets/{dataset_id}/export")
    def export(dataset_id: str):
        session = get_session(dataset_id)
        with session.lock:
            try:
                bundle = build_export(session.dataset)
            except ExportBlockedError as e:
                raise HTTPException(status_code=409, detail=str(e)) from e
            return bundle.model_dump(mode="json", by_alias=True)

    @app.get("/datasets/{dataset_id}/export/{name}.csv")
    def export_csv(dataset_id: str, name: str):
        kind = EXPORT_NAMES.get(name)
        if kind is None:
            raise HTTPException(status_code=404, detail=f"Unknown collection: {name}")
        session = get_session(dataset_id)
        with session.lock:
            try:
                content = render_csv(session.dataset, kind)
            except ExportBlockedError as e:
                raise HTTPException(status_code=409, detail=str(e)) from e
        return Response(
            content=content,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{name}.csv"'},
        )

    return app


app = create_app()
