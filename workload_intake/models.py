from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .rules import DEFAULT_WEIGHTS, PROVIDER_COLUMNS, REQUESTER_COLUMNS, WORK_UNIT_COLUMNS


class EntityKind(str, Enum):
    REQUESTER = "requester"
    PROVIDER = "provider"
    WORK_UNIT = "work_unit"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class DefectCategory(str, Enum):
    MALFORMED = "malformed"
    STRUCTURAL = "structural"
    REFERENTIAL = "referential"
    CAPACITY = "capacity"


# --- entity records ---


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    KIND: ClassVar[EntityKind]
    ID_COLUMN: ClassVar[str]
    COLUMNS: ClassVar[Dict[str, str]]

    @property
    def entity_id(self) -> str:
        return getattr(self, self.COLUMNS[self.ID_COLUMN])


class Requester(_Record):
    KIND: ClassVar[EntityKind] = EntityKind.REQUESTER
    ID_COLUMN: ClassVar[str] = "ClientID"
    COLUMNS: ClassVar[Dict[str, str]] = REQUESTER_COLUMNS

    client_id: str = Field(default="", alias="ClientID")
    client_name: str = Field(default="", alias="ClientName")
    priority_level: int = Field(default=0, alias="PriorityLevel")
    requested_task_ids: List[str] = Field(default_factory=list, alias="RequestedTaskIDs")
    group_tag: str = Field(default="", alias="GroupTag")
    attributes: Dict[str, Any] = Field(default_factory=dict, alias="AttributesJSON")


class Provider(_Record):
    KIND: ClassVar[EntityKind] = EntityKind.PROVIDER
    ID_COLUMN: ClassVar[str] = "WorkerID"
    COLUMNS: ClassVar[Dict[str, str]] = PROVIDER_COLUMNS

    worker_id: str = Field(default="", alias="WorkerID")
    worker_name: str = Field(default="", alias="WorkerName")
    skills: List[str] = Field(default_factory=list, alias="Skills")
    available_slots: List[int] = Field(default_factory=list, alias="AvailableSlots")
    max_load_per_phase: int = Field(default=0, alias="MaxLoadPerPhase")
    worker_group: str = Field(default="", alias="WorkerGroup")
    qualification_level: str = Field(default="", alias="QualificationLevel")


class WorkUnit(_Record):
    KIND: ClassVar[EntityKind] = EntityKind.WORK_UNIT
    ID_COLUMN: ClassVar[str] = "TaskID"
    COLUMNS: ClassVar[Dict[str, str]] = WORK_UNIT_COLUMNS

    task_id: str = Field(default="", alias="TaskID")
    task_name: str = Field(default="", alias="TaskName")
    category: str = Field(default="", alias="Category")
    duration: int = Field(default=0, alias="Duration")
    required_skills: List[str] = Field(default_factory=list, alias="RequiredSkills")
    preferred_phases: List[int] = Field(default_factory=list, alias="PreferredPhases")
    max_concurrent: int = Field(default=0, alias="MaxConcurrent")


RECORD_TYPES = {
    EntityKind.REQUESTER: Requester,
    EntityKind.PROVIDER: Provider,
    EntityKind.WORK_UNIT: WorkUnit,
}


# --- business rules (stored and exported, not evaluated) ---


class CoRunRule(BaseModel):
    type: Literal["coRun"]
    id: str
    name: str
    tasks: List[str]


class SlotRestrictionRule(BaseModel):
    type: Literal["slotRestriction"]
    id: str
    name: str
    targetGroup: str
    targetType: Literal["client", "worker"]
    minCommonSlots: int


class LoadLimitRule(BaseModel):
    type: Literal["loadLimit"]
    id: str
    name: str
    workerGroup: str
    maxSlotsPerPhase: int


class PhaseWindowRule(BaseModel):
    type: Literal["phaseWindow"]
    id: str
    name: str
    taskId: str
    allowedPhases: List[int]


class PatternMatchRule(BaseModel):
    type: Literal["patternMatch"]
    id: str
    name: str
    regex: str
    template: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


class PrecedenceOverrideRule(BaseModel):
    type: Literal["precedenceOverride"]
    id: str
    name: str
    globalRules: List[str]
    specificRules: List[str]
    priority: int


BusinessRule = Annotated[
    Union[
        CoRunRule,
        SlotRestrictionRule,
        LoadLimitRule,
        PhaseWindowRule,
        PatternMatchRule,
        PrecedenceOverrideRule,
    ],
    Field(discriminator="type"),
]


class PrioritizationWeights(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    priority_level: float = Field(default=DEFAULT_WEIGHTS["priorityLevel"], ge=0, le=1, alias="priorityLevel")
    task_fulfillment: float = Field(default=DEFAULT_WEIGHTS["taskFulfillment"], ge=0, le=1, alias="taskFulfillment")
    fairness: float = Field(default=DEFAULT_WEIGHTS["fairness"], ge=0, le=1, alias="fairness")
    workload_balance: float = Field(default=DEFAULT_WEIGHTS["workloadBalance"], ge=0, le=1, alias="workloadBalance")
    skill_matching: float = Field(default=DEFAULT_WEIGHTS["skillMatching"], ge=0, le=1, alias="skillMatching")
    phase_preference: float = Field(default=DEFAULT_WEIGHTS["phasePreference"], ge=0, le=1, alias="phasePreference")
    client_group: float = Field(default=DEFAULT_WEIGHTS["clientGroup"], ge=0, le=1, alias="clientGroup")
    worker_experience: float = Field(default=DEFAULT_WEIGHTS["workerExperience"], ge=0, le=1, alias="workerExperience")

    @model_validator(mode="after")
    def _total_within_one(self) -> "PrioritizationWeights":
        # float noise from UI sliders
        if self.total() > 1.0 + 1e-6:
            raise ValueError(f"total weight cannot exceed 1.0, got {self.total():.3f}")
        return self

    def total(self) -> float:
        return sum(getattr(self, name) for name in type(self).model_fields)

    def normalized(self) -> "PrioritizationWeights":
        total = self.total()
        if total == 0:
            return self.model_copy()
        return self.model_copy(
            update={name: getattr(self, name) / total for name in type(self).model_fields}
        )


class PrioritizationProfile(BaseModel):
    id: str
    name: str
    description: str
    weights: PrioritizationWeights


class Dataset(BaseModel):
    requesters: List[Requester] = Field(default_factory=list)
    providers: List[Provider] = Field(default_factory=list)
    work_units: List[WorkUnit] = Field(default_factory=list)
    rules: List[BusinessRule] = Field(default_factory=list)
    weights: PrioritizationWeights = Field(default_factory=PrioritizationWeights)

    def collection(self, kind: EntityKind) -> list:
        if kind is EntityKind.REQUESTER:
            return self.requesters
        if kind is EntityKind.PROVIDER:
            return self.providers
        return self.work_units


# --- diagnostics and fixes ---


class Diagnostic(BaseModel):
    id: str
    severity: Severity
    category: DefectCategory
    entity_kind: EntityKind
    entity_id: str
    field: str
    defect: str
    message: str
    suggestion: Optional[str] = None
    auto_fix_available: bool = False
    row: Optional[int] = None


class ValidationSummary(BaseModel):
    errors: int = 0
    warnings: int = 0
    info: int = 0
    passed: bool = True


class NormalizationNote(BaseModel):
    entity_kind: EntityKind
    row: Optional[int] = None
    column: Optional[str] = None
    issue: str
    value: Optional[str] = None
    action: str


class FieldUpdate(BaseModel):
    entity_kind: EntityKind
    entity_id: str
    row: Optional[int] = None
    field: str
    value: Any


class FixResult(BaseModel):
    diagnostic_id: str
    applied: bool
    update: Optional[FieldUpdate] = None
    reason: Optional[str] = None
    outstanding: List[Diagnostic] = Field(default_factory=list)


class Suggestion(BaseModel):
    diagnostic_id: str = Field(alias="diagnosticId")
    suggested_fix: str = Field(alias="suggestedFix")
    explanation: str = ""
    confidence: float = Field(ge=0, le=1)
    auto_applicable: bool = Field(default=False, alias="autoApplicable")
    source: str = "local"

    model_config = ConfigDict(populate_by_name=True)


# --- export ---


class ExportMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    export_timestamp: str = Field(alias="exportTimestamp")
    schema_version: str = Field(alias="schemaVersion")
    validation_passed: bool = Field(alias="validationPassed")
    total_errors: int = Field(alias="totalErrors")
    total_warnings: int = Field(alias="totalWarnings")


class ExportBundle(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    clients: List[Requester]
    workers: List[Provider]
    tasks: List[WorkUnit]
    rules: List[BusinessRule] = Field(default_factory=list)
    prioritization: PrioritizationWeights
    metadata: ExportMetadata


# --- API envelopes ---


class HealthResponse(BaseModel):
    ok: bool = True


class StatusResponse(BaseModel):
    enrichment_configured: bool
    enrichment_provider: str
    overload_fix_policy: str


class IngestResponse(BaseModel):
    dataset_id: str
    counts: Dict[str, int]
    notes: List[NormalizationNote] = Field(default_factory=list)
    summary: ValidationSummary
    diagnostics: List[Diagnostic] = Field(default_factory=list)


class ValidationResponse(BaseModel):
    dataset_id: str
    summary: ValidationSummary
    diagnostics: List[Diagnostic] = Field(default_factory=list)


class DatasetResponse(BaseModel):
    dataset_id: str
    requesters: List[Requester]
    providers: List[Provider]
    work_units: List[WorkUnit]
    summary: ValidationSummary
    diagnostics: List[Diagnostic] = Field(default_factory=list)


class SuggestionsResponse(BaseModel):
    dataset_id: str
    suggestions: List[Suggestion] = Field(default_factory=list)
    response: str = ""
    pending: bool = False


class EditResponse(BaseModel):
    entity_kind: EntityKind
    record: Dict[str, Any]
    notes: List[NormalizationNote] = Field(default_factory=list)


class FixAllResponse(BaseModel):
    dataset_id: str
    applied: int
    declined: int
    results: List[FixResult] = Field(default_factory=list)
    summary: ValidationSummary
    diagnostics: List[Diagnostic] = Field(default_factory=list)
