"""
Persistence for projects, test cases, runs and step results.
"""

from stepwise.storage.models import (
    Base,
    ProjectRecord,
    RunRecord,
    StepRecord,
    StepResultRecord,
    TestCaseRecord,
)
from stepwise.storage.seed import SampleSeedResult, seed_sample_project
from stepwise.storage.store import (
    MISSING_STEP_TEXT,
    STEP_DID_NOT_RUN,
    SQLAlchemyRecordStore,
    create_db_engine,
    validate_base_url,
)

__all__ = [
    "Base",
    "ProjectRecord",
    "TestCaseRecord",
    "StepRecord",
    "RunRecord",
    "StepResultRecord",
    "SQLAlchemyRecordStore",
    "create_db_engine",
    "validate_base_url",
    "MISSING_STEP_TEXT",
    "STEP_DID_NOT_RUN",
    "SampleSeedResult",
    "seed_sample_project",
]
