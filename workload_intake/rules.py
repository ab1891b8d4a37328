"""
Deterministic validation rules.

Bounds, defaults and column layouts shared by the normalizer, the validator
and the fix resolver live here so the three never disagree.
"""

TARGET_ENCODING = "utf-8-sig"  # UTF-8 with BOM
NORMALIZED_DELIMITER = ","
SNIFF_DELIMITERS = [",", ";", "\t", "|"]
CSV_SUFFIXES = ("csv",)
# legacy .xls is binary BIFF, which openpyxl cannot read
WORKBOOK_SUFFIXES = ("xlsx", "xlsm")

PRIORITY_MIN = 1
PRIORITY_MAX = 5
MIN_DURATION = 1
MIN_CONCURRENT = 1
MIN_LOAD_PER_PHASE = 1

# Synthesized when a provider declares no available phase at all.
DEFAULT_AVAILABLE_SLOTS = [1]

# Longest phase list a single cell or fix may produce; larger ranges degrade to [].
MAX_PHASE_SPAN = 1000

SCHEMA_VERSION = "1.0.0"

# Remote enrichment never sees more than this many diagnostics per request.
ENRICHMENT_BATCH_SIZE = 10

# column -> model attribute, in column order
REQUESTER_COLUMNS = {
    "ClientID": "client_id",
    "ClientName": "client_name",
    "PriorityLevel": "priority_level",
    "RequestedTaskIDs": "requested_task_ids",
    "GroupTag": "group_tag",
    "AttributesJSON": "attributes",
}

PROVIDER_COLUMNS = {
    "WorkerID": "worker_id",
    "WorkerName": "worker_name",
    "Skills": "skills",
    "AvailableSlots": "available_slots",
    "MaxLoadPerPhase": "max_load_per_phase",
    "WorkerGroup": "worker_group",
    "QualificationLevel": "qualification_level",
}

WORK_UNIT_COLUMNS = {
    "TaskID": "task_id",
    "TaskName": "task_name",
    "Category": "category",
    "Duration": "duration",
    "RequiredSkills": "required_skills",
    "PreferredPhases": "preferred_phases",
    "MaxConcurrent": "max_concurrent",
}

DEFAULT_WEIGHTS = {
    "priorityLevel": 0.25,
    "taskFulfillment": 0.20,
    "fairness": 0.15,
    "workloadBalance": 0.15,
    "skillMatching": 0.10,
    "phasePreference": 0.05,
    "clientGroup": 0.05,
    "workerExperience": 0.05,
}

PRIORITIZATION_PROFILES = [
    {
        "id": "balanced",
        "name": "Balanced Approach",
        "description": "Equal consideration for all factors",
        "weights": {key: 0.125 for key in DEFAULT_WEIGHTS},
    },
    {
        "id": "client_focused",
        "name": "Client-Focused",
        "description": "Prioritize client satisfaction and requests",
        "weights": {
            "priorityLevel": 0.35,
            "taskFulfillment": 0.25,
            "fairness": 0.10,
            "workloadBalance": 0.10,
            "skillMatching": 0.10,
            "phasePreference": 0.05,
            "clientGroup": 0.03,
            "workerExperience": 0.02,
        },
    },
    {
        "id": "efficiency",
        "name": "Maximum Efficiency",
        "description": "Optimize for skill matching and workload balance",
        "weights": {
            "priorityLevel": 0.15,
            "taskFulfillment": 0.20,
            "fairness": 0.10,
            "workloadBalance": 0.25,
            "skillMatching": 0.25,
            "phasePreference": 0.03,
            "clientGroup": 0.01,
            "workerExperience": 0.01,
        },
    },
    {
        "id": "fairness",
        "name": "Fair Distribution",
        "description": "Ensure equitable work distribution",
        "weights": {
            "priorityLevel": 0.10,
            "taskFulfillment": 0.15,
            "fairness": 0.40,
            "workloadBalance": 0.25,
            "skillMatching": 0.05,
            "phasePreference": 0.02,
            "clientGroup": 0.02,
            "workerExperience": 0.01,
        },
    },
]

# Columns every upload of a kind must carry: the ID plus every column a rule reads.
REQUIRED_COLUMNS = {
    "requester": ["ClientID", "PriorityLevel", "RequestedTaskIDs"],
    "provider": ["WorkerID", "Skills", "AvailableSlots", "MaxLoadPerPhase"],
    "work_unit": ["TaskID", "Duration", "RequiredSkills", "PreferredPhases", "MaxConcurrent"],
}
