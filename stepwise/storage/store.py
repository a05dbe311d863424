"""
SQLAlchemy-backed record store.

Catalog CRUD for projects and test cases, plus the run intents consumed by
the run orchestrator. Every public method runs in its own transaction.
"""

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Union
from urllib.parse import urlparse

from sqlalchemy import create_engine, delete, event, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from stepwise.core.interfaces import RunRecordStore
from stepwise.core.types import (
    ActiveRunContext,
    BrowserName,
    Project,
    Run,
    RunContext,
    RunStatus,
    Step,
    StepResult,
    StepStatus,
    TestCase,
    action_to_json,
    utc_now,
)
from stepwise.error_handling.exceptions import RecordNotFoundError, RecordValidationError
from stepwise.interpreter.parser import parse_step
from stepwise.monitoring.logger import get_logger
from stepwise.storage.models import (
    Base,
    ProjectRecord,
    RunRecord,
    StepRecord,
    StepResultRecord,
    TestCaseRecord,
)

logger = get_logger(__name__)

MISSING_STEP_TEXT = "[missing step]"
STEP_DID_NOT_RUN = "Step did not run."
INVALID_BASE_URL = "Base URL must be a valid URL including protocol (https://...)."


def new_id() -> str:
    return str(uuid.uuid4())


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def validate_base_url(base_url: str) -> str:
    value = (base_url or "").strip()
    parsed = urlparse(value)
    if parsed.scheme.lower() not in ("http", "https") or not parsed.netloc:
        raise RecordValidationError(INVALID_BASE_URL, details={"base_url": base_url})
    return value


def metadata_to_json(metadata: Optional[Dict[str, Any]]) -> str:
    return json.dumps(metadata or {})


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(database_url: str) -> Engine:
    """Create an engine; SQLite connections enforce foreign keys."""
    engine = create_engine(database_url, future=True)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


class SQLAlchemyRecordStore(RunRecordStore):
    """Record store on a SQLAlchemy engine."""

    def __init__(self, engine_or_url: Union[Engine, str]) -> None:
        """
        Initialize the store.

        Args:
            engine_or_url: Engine or database URL
        """
        if isinstance(engine_or_url, str):
            self.engine = create_db_engine(engine_or_url)
        else:
            self.engine = engine_or_url
        self._sessions = sessionmaker(
            bind=self.engine, expire_on_commit=False, autoflush=False
        )

    def init_db(self) -> None:
        """Create all tables."""
        Base.metadata.create_all(self.engine)
        logger.info("Database initialized", extra={"url": str(self.engine.url)})

    def close(self) -> None:
        self.engine.dispose()

    def _session(self):
        return self._sessions.begin()

    # Projects

    def create_project(
        self,
        name: str,
        base_url: str,
        env_label: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Project:
        clean_name = (name or "").strip()
        if not clean_name:
            raise RecordValidationError("Project name is required.")
        record = ProjectRecord(
            id=new_id(),
            name=clean_name,
            base_url=validate_base_url(base_url),
            env_label=(env_label or "").strip() or "local",
            metadata_json=metadata_to_json(metadata),
            created_at=utc_now(),
        )
        with self._session() as session:
            session.add(record)
        logger.info("Created project", extra={"project_id": record.id})
        return _to_project(record)

    def update_project(
        self,
        project_id: str,
        name: str,
        base_url: str,
        env_label: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Project:
        clean_name = (name or "").strip()
        if not clean_name:
            raise RecordValidationError("Project name is required.")
        clean_url = validate_base_url(base_url)

        with self._session() as session:
            record = session.get(ProjectRecord, project_id)
            if record is None:
                raise RecordNotFoundError("Project not found.", "project", project_id)
            record.name = clean_name
            record.base_url = clean_url
            record.env_label = (env_label or "").strip() or record.env_label
            record.metadata_json = metadata_to_json(metadata)
            return _to_project(record)

    def delete_project(self, project_id: str) -> bool:
        with self._session() as session:
            result = session.execute(delete(ProjectRecord).where(ProjectRecord.id == project_id))
            return result.rowcount > 0

    def list_projects(self) -> List[Project]:
        with self._session() as session:
            rows = session.scalars(
                select(ProjectRecord).order_by(ProjectRecord.created_at.desc())
            ).all()
            return [_to_project(row) for row in rows]

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._session() as session:
            record = session.get(ProjectRecord, project_id)
            return _to_project(record) if record else None

    # Test cases

    def create_test_case(self, project_id: str, title: str, steps: Sequence[str]) -> TestCase:
        """
        Create a test case; every step must parse.

        Raises:
            RecordValidationError: If the title is empty or a step does not parse
            RecordNotFoundError: If the project does not exist
        """
        clean_title = _require_title(title)
        step_records = _build_steps(steps)
        timestamp = utc_now()

        with self._session() as session:
            if session.get(ProjectRecord, project_id) is None:
                raise RecordNotFoundError("Project not found.", "project", project_id)
            record = TestCaseRecord(
                id=new_id(),
                project_id=project_id,
                title=clean_title,
                created_at=timestamp,
                updated_at=timestamp,
            )
            session.add(record)
            for step in step_records:
                step.test_case_id = record.id
                session.add(step)
            session.flush()
            test_case = _to_test_case(record)

        logger.info(
            "Created test case",
            extra={"test_case_id": test_case.id, "steps": len(step_records)},
        )
        return test_case

    def update_test_case(
        self,
        test_case_id: str,
        title: str,
        steps: Sequence[str],
        project_id: Optional[str] = None,
    ) -> TestCase:
        """
        Replace a test case's title and steps.

        Raises:
            RecordValidationError: If a run is in progress or a step does not parse
            RecordNotFoundError: If the test case or new project does not exist
        """
        clean_title = _require_title(title)
        step_records = _build_steps(steps)

        with self._session() as session:
            record = session.get(TestCaseRecord, test_case_id)
            if record is None:
                raise RecordNotFoundError("Test case not found.", "test_case", test_case_id)
            if _has_running_run(session, test_case_id):
                raise RecordValidationError(
                    "Cannot update test case while a run is in progress for this test case."
                )
            if project_id and project_id != record.project_id:
                if session.get(ProjectRecord, project_id) is None:
                    raise RecordNotFoundError("Project not found.", "project", project_id)
                record.project_id = project_id

            record.title = clean_title
            record.updated_at = utc_now()
            session.execute(delete(StepRecord).where(StepRecord.test_case_id == test_case_id))
            for step in step_records:
                step.test_case_id = test_case_id
                session.add(step)
            session.flush()
            return _to_test_case(record)

    def delete_test_case(self, test_case_id: str) -> bool:
        with self._session() as session:
            if _has_running_run(session, test_case_id):
                raise RecordValidationError(
                    "Cannot delete test case while a run is in progress for this test case."
                )
            result = session.execute(
                delete(TestCaseRecord).where(TestCaseRecord.id == test_case_id)
            )
            return result.rowcount > 0

    def list_test_cases(self, project_id: str) -> List[TestCase]:
        with self._session() as session:
            rows = session.scalars(
                select(TestCaseRecord)
                .where(TestCaseRecord.project_id == project_id)
                .order_by(TestCaseRecord.updated_at.desc())
            ).all()
            return [_to_test_case(row) for row in rows]

    def get_test_case(self, test_case_id: str) -> Optional[TestCase]:
        with self._session() as session:
            record = session.get(TestCaseRecord, test_case_id)
            return _to_test_case(record) if record else None

    def list_steps(self, test_case_id: str) -> List[Step]:
        with self._session() as session:
            rows = session.scalars(
                select(StepRecord)
                .where(StepRecord.test_case_id == test_case_id)
                .order_by(StepRecord.step_order.asc())
            ).all()
            return [_to_step(row) for row in rows]

    # Run intents

    def get_run_context(self, test_case_id: str) -> RunContext:
        with self._session() as session:
            row = session.execute(
                select(TestCaseRecord, ProjectRecord)
                .join(ProjectRecord, ProjectRecord.id == TestCaseRecord.project_id)
                .where(TestCaseRecord.id == test_case_id)
            ).first()
            if row is None:
                raise RecordNotFoundError("Test case not found.", "test_case", test_case_id)
            test_case, project = row
            return RunContext(
                test_case_id=test_case.id,
                test_title=test_case.title,
                project_id=project.id,
                project_name=project.name,
                base_url=project.base_url,
            )

    def create_run(self, run: Run, step_ids: Sequence[str]) -> None:
        with self._session() as session:
            session.add(
                RunRecord(
                    id=run.id,
                    test_case_id=run.test_case_id,
                    browser=run.browser.value,
                    status=run.status.value,
                    started_at=run.started_at,
                    ended_at=run.ended_at,
                )
            )
            session.flush()
            for step_id in step_ids:
                session.add(
                    StepResultRecord(
                        id=new_id(),
                        run_id=run.id,
                        step_id=step_id,
                        status=StepStatus.PENDING.value,
                    )
                )

    def get_run(self, run_id: str) -> Optional[Run]:
        with self._session() as session:
            record = session.get(RunRecord, run_id)
            return _to_run(record) if record else None

    def list_runs(self, test_case_id: str) -> List[Run]:
        with self._session() as session:
            rows = session.scalars(
                select(RunRecord)
                .where(RunRecord.test_case_id == test_case_id)
                .order_by(RunRecord.started_at.asc(), RunRecord.id.asc())
            ).all()
            return [_to_run(row) for row in rows]

    def update_run_status(
        self, run_id: str, status: RunStatus, ended_at: Optional[datetime]
    ) -> bool:
        with self._session() as session:
            result = session.execute(
                update(RunRecord)
                .where(RunRecord.id == run_id)
                .values(status=status.value, ended_at=ended_at)
            )
            return result.rowcount > 0

    def update_step_result(
        self,
        run_id: str,
        step_id: str,
        status: StepStatus,
        error_text: Optional[str],
        screenshot_path: Optional[str],
    ) -> Optional[StepResult]:
        with self._session() as session:
            result = session.execute(
                update(StepResultRecord)
                .where(StepResultRecord.run_id == run_id, StepResultRecord.step_id == step_id)
                .values(status=status.value, error_text=error_text, screenshot_path=screenshot_path)
            )
            if result.rowcount == 0:
                return None
            row = session.execute(
                _step_result_query().where(
                    StepResultRecord.run_id == run_id, StepResultRecord.step_id == step_id
                )
            ).first()
            return _to_step_result(*row) if row else None

    def list_step_results(self, run_id: str) -> List[StepResult]:
        with self._session() as session:
            rows = session.execute(
                _step_result_query()
                .where(StepResultRecord.run_id == run_id)
                .order_by(func.coalesce(StepRecord.step_order, 0).asc(), StepResultRecord.id.asc())
            ).all()
            return [_to_step_result(*row) for row in rows]

    def first_pending_step_id(self, run_id: str) -> Optional[str]:
        with self._session() as session:
            return session.scalars(
                select(StepResultRecord.step_id)
                .join(StepRecord, StepRecord.id == StepResultRecord.step_id)
                .where(
                    StepResultRecord.run_id == run_id,
                    StepResultRecord.status == StepStatus.PENDING.value,
                )
                .order_by(StepRecord.step_order.asc())
                .limit(1)
            ).first()

    def mark_pending_cancelled(self, run_id: str) -> int:
        with self._session() as session:
            result = session.execute(
                update(StepResultRecord)
                .where(
                    StepResultRecord.run_id == run_id,
                    StepResultRecord.status == StepStatus.PENDING.value,
                )
                .values(
                    status=StepStatus.CANCELLED.value,
                    error_text=func.coalesce(StepResultRecord.error_text, STEP_DID_NOT_RUN),
                )
            )
            return result.rowcount

    def find_running_context(self) -> Optional[ActiveRunContext]:
        with self._session() as session:
            row = session.execute(
                select(RunRecord.id, RunRecord.test_case_id, TestCaseRecord.project_id)
                .join(TestCaseRecord, TestCaseRecord.id == RunRecord.test_case_id)
                .where(RunRecord.status == RunStatus.RUNNING.value)
                .order_by(RunRecord.started_at.desc())
                .limit(1)
            ).first()
            if row is None:
                return None
            return ActiveRunContext(run_id=row[0], test_case_id=row[1], project_id=row[2])


def _require_title(title: str) -> str:
    clean_title = (title or "").strip()
    if not clean_title:
        raise RecordValidationError("Test case title is required.")
    return clean_title


def _build_steps(raw_steps: Sequence[str]) -> List[StepRecord]:
    """Parse and number steps; rejects the whole list on the first bad step."""
    records = []
    for index, raw_text in enumerate(raw_steps, start=1):
        parsed = parse_step(raw_text)
        if not parsed.ok or parsed.action is None:
            raise RecordValidationError(
                f"Step {index}: {parsed.error}",
                details={"step_order": index, "raw_text": raw_text},
            )
        records.append(
            StepRecord(
                id=new_id(),
                step_order=index,
                raw_text=raw_text.strip(),
                action_json=action_to_json(parsed.action),
            )
        )
    return records


def _has_running_run(session: Session, test_case_id: str) -> bool:
    return session.scalars(
        select(RunRecord.id)
        .where(
            RunRecord.test_case_id == test_case_id,
            RunRecord.status == RunStatus.RUNNING.value,
        )
        .limit(1)
    ).first() is not None


def _step_result_query():
    return select(StepResultRecord, StepRecord.step_order, StepRecord.raw_text).outerjoin(
        StepRecord, StepRecord.id == StepResultRecord.step_id
    )


def _to_project(record: ProjectRecord) -> Project:
    return Project(
        id=record.id,
        name=record.name,
        base_url=record.base_url,
        env_label=record.env_label,
        metadata_json=record.metadata_json,
        created_at=as_utc(record.created_at),
    )


def _to_test_case(record: TestCaseRecord) -> TestCase:
    return TestCase(
        id=record.id,
        project_id=record.project_id,
        title=record.title,
        created_at=as_utc(record.created_at),
        updated_at=as_utc(record.updated_at),
    )


def _to_step(record: StepRecord) -> Step:
    return Step(
        id=record.id,
        test_case_id=record.test_case_id,
        step_order=record.step_order,
        raw_text=record.raw_text,
        action_json=record.action_json,
    )


def _to_run(record: RunRecord) -> Run:
    return Run(
        id=record.id,
        test_case_id=record.test_case_id,
        browser=BrowserName(record.browser),
        status=RunStatus(record.status),
        started_at=as_utc(record.started_at),
        ended_at=as_utc(record.ended_at),
    )


def _to_step_result(
    record: StepResultRecord, step_order: Optional[int], raw_text: Optional[str]
) -> StepResult:
    return StepResult(
        id=record.id,
        run_id=record.run_id,
        step_id=record.step_id,
        step_order=step_order if step_order is not None else 0,
        step_raw_text=raw_text if raw_text is not None else MISSING_STEP_TEXT,
        status=StepStatus(record.status),
        error_text=record.error_text,
        screenshot_path=record.screenshot_path,
    )
