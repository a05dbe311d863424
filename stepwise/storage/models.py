"""Database models for Stepwise persistence."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship

from stepwise.core.types import utc_now

Base = declarative_base()


class ProjectRecord(Base):
    """Application under test."""
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True)
    name = Column(String(200), nullable=False)
    base_url = Column(String(1000), nullable=False)
    env_label = Column(String(50), nullable=False, default="local")
    metadata_json = Column(Text, nullable=False, default="{}")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    test_cases = relationship(
        "TestCaseRecord",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class TestCaseRecord(Base):
    """Titled, ordered list of steps."""
    __tablename__ = "test_cases"
    __test__ = False

    id = Column(String(36), primary_key=True)
    project_id = Column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(String(500), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    project = relationship("ProjectRecord", back_populates="test_cases")
    steps = relationship(
        "StepRecord",
        back_populates="test_case",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="StepRecord.step_order",
    )
    runs = relationship(
        "RunRecord",
        back_populates="test_case",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class StepRecord(Base):
    """One authored step and its serialized action."""
    __tablename__ = "steps"

    id = Column(String(36), primary_key=True)
    test_case_id = Column(
        String(36), ForeignKey("test_cases.id", ondelete="CASCADE"), nullable=False, index=True
    )
    step_order = Column(Integer, nullable=False)
    raw_text = Column(Text, nullable=False)
    action_json = Column(Text, nullable=False)

    test_case = relationship("TestCaseRecord", back_populates="steps")


class RunRecord(Base):
    """One execution of a test case."""
    __tablename__ = "runs"

    id = Column(String(36), primary_key=True)
    test_case_id = Column(
        String(36), ForeignKey("test_cases.id", ondelete="CASCADE"), nullable=False, index=True
    )
    browser = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, index=True)
    started_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    ended_at = Column(DateTime(timezone=True), nullable=True)

    test_case = relationship("TestCaseRecord", back_populates="runs")
    step_results = relationship(
        "StepResultRecord",
        back_populates="run",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class StepResultRecord(Base):
    """Outcome of one step within one run."""
    __tablename__ = "step_results"

    id = Column(String(36), primary_key=True)
    run_id = Column(
        String(36), ForeignKey("runs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    step_id = Column(
        String(36), ForeignKey("steps.id", ondelete="CASCADE"), nullable=False
    )
    status = Column(String(20), nullable=False)
    error_text = Column(Text, nullable=True)
    screenshot_path = Column(String(1000), nullable=True)

    run = relationship("RunRecord", back_populates="step_results")
