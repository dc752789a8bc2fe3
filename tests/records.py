"""Record builders for the Apollo test project."""
from datetime import date

from app.scenarios.schemas import AssignmentRecord, PhaseTimelineRecord, ProjectRecord


def assignment(allocation: float, person_id: str = "person_ada", role_id: str = "role_dev", **kwargs) -> AssignmentRecord:
    """Assignment record on the Apollo project."""
    return AssignmentRecord(
        project_id="proj_apollo",
        person_id=person_id,
        role_id=role_id,
        allocation_percentage=allocation,
        **kwargs,
    )


def phase(start: date, end: date) -> PhaseTimelineRecord:
    """Timeline for Apollo's build phase."""
    return PhaseTimelineRecord(
        project_id="proj_apollo",
        phase_id="phase_build",
        start_date=start,
        end_date=end,
    )


def project(name: str = "Apollo", priority: int = 1) -> ProjectRecord:
    return ProjectRecord(name=name, priority=priority)
