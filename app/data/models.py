"""Database models for the baseline capacity plan.

These tables hold the baseline scenario's own records. Scenarios other than
the baseline never write here; they shadow these rows with overlays
(see app.scenarios.models). Merging into the baseline is the only path that
rewrites them.
"""
from sqlalchemy import Column, String, DateTime, Date, Float, Integer, Text, Index
from sqlalchemy.sql import func
from app.database import Base
import secrets


def generate_id(prefix: str) -> str:
    """Generate a unique ID with a prefix."""
    return f"{prefix}_{secrets.token_hex(6)}"


class BaselineRecordMixin:
    """Version stamps shared by all baseline tables.

    version: baseline scenario version of the last write to this row.
    removed_version: set when the row is removed from the plan; the row stays
    so that later merges can still see that the baseline removed it.
    """

    version = Column(Integer, nullable=False, default=0)
    removed_version = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def is_removed(self) -> bool:
        return self.removed_version is not None


class Project(BaselineRecordMixin, Base):
    """Project attributes in the baseline plan."""

    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=lambda: generate_id("proj"))
    name = Column(String, nullable=False)
    priority = Column(Integer, nullable=True)  # 1 = highest
    aspiration_start = Column(Date, nullable=True)
    aspiration_finish = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)


class ProjectPhaseTimeline(BaselineRecordMixin, Base):
    """When a project's phase runs in the baseline plan."""

    __tablename__ = "project_phases_timeline"

    id = Column(String, primary_key=True, default=lambda: generate_id("phtl"))
    project_id = Column(String, nullable=False, index=True)
    phase_id = Column(String, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_project_phases_timeline_project_phase", "project_id", "phase_id"),
    )


class ProjectAssignment(BaselineRecordMixin, Base):
    """A person's fractional allocation to a project in the baseline plan."""

    __tablename__ = "project_assignments"

    id = Column(String, primary_key=True, default=lambda: generate_id("asgn"))
    project_id = Column(String, nullable=False, index=True)
    person_id = Column(String, nullable=False, index=True)
    role_id = Column(String, nullable=False)
    phase_id = Column(String, nullable=True)

    allocation_percentage = Column(Float, nullable=False)
    assignment_date_mode = Column(String, nullable=False, default="project")  # "project", "phase", "fixed"
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
