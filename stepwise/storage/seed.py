"""
Sample project seeding.
"""

from typing import Dict, List

from pydantic import BaseModel

from stepwise.core.types import Project, TestCase
from stepwise.monitoring.logger import get_logger
from stepwise.storage.store import SQLAlchemyRecordStore

logger = get_logger(__name__)

SAMPLE_PROJECT_NAME = "Sample QA Project"
SAMPLE_BASE_URL = "https://example.com"
SAMPLE_ENV_LABEL = "sample"
SAMPLE_METADATA: Dict[str, str] = {"seedTag": "sample-local"}

SAMPLE_TEST_TITLE = "Sample login flow"
SAMPLE_STEPS: List[str] = [
    'Enter "qa.user@example.com" in "Email" field',
    'Enter "password123" in "Password" field',
    'Click "Login"',
    "Expect dashboard is visible",
]


class SampleSeedResult(BaseModel):
    project: Project
    test_case: TestCase
    created_project: bool
    created_test_case: bool


def seed_sample_project(store: SQLAlchemyRecordStore) -> SampleSeedResult:
    """
    Create the sample project and its login test unless they already exist.

    The project is matched on name, base URL and environment label; the
    test case on its title within that project.
    """
    project = next(
        (
            p
            for p in store.list_projects()
            if p.name == SAMPLE_PROJECT_NAME
            and p.base_url == SAMPLE_BASE_URL
            and p.env_label == SAMPLE_ENV_LABEL
        ),
        None,
    )
    created_project = project is None
    if project is None:
        project = store.create_project(
            SAMPLE_PROJECT_NAME, SAMPLE_BASE_URL, SAMPLE_ENV_LABEL, SAMPLE_METADATA
        )

    test_case = next(
        (t for t in store.list_test_cases(project.id) if t.title == SAMPLE_TEST_TITLE),
        None,
    )
    created_test_case = test_case is None
    if test_case is None:
        test_case = store.create_test_case(project.id, SAMPLE_TEST_TITLE, SAMPLE_STEPS)

    logger.info(
        "Sample project seeded",
        extra={
            "project_id": project.id,
            "created_project": created_project,
            "created_test_case": created_test_case,
        },
    )
    return SampleSeedResult(
        project=project,
        test_case=test_case,
        created_project=created_project,
        created_test_case=created_test_case,
    )
