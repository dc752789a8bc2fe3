"""
Scenario Planning Exceptions.

Three families, matched to how callers should react:
- Not found: the referenced scenario or conflict does not exist
- Validation: the write or merge request breaks a record-level rule and
  is rejected before anything is written
- Structure: the scenario hierarchy itself is broken (no common ancestor,
  cycle, missing parent); a data-integrity problem, not a runtime condition

Merge conflicts are NOT exceptions; they are part of a successful merge result.
"""
from typing import List, Optional


class ScenarioError(Exception):
    """Base exception for all scenario planning errors."""

    status_code = 400

    def __init__(self, message: str, code: str = "SCENARIO_ERROR"):
        self.message = message
        self.code = code
        super().__init__(self.message)


# =============================================================================
# Not Found
# =============================================================================

class ScenarioNotFoundError(ScenarioError):
    """Raised when a scenario id does not exist."""

    status_code = 404

    def __init__(self, scenario_id: str):
        super().__init__(f"Scenario '{scenario_id}' not found", code="SCENARIO_NOT_FOUND")
        self.scenario_id = scenario_id


class ConflictNotFoundError(ScenarioError):
    """Raised when a merge conflict id does not exist."""

    status_code = 404

    def __init__(self, conflict_id: str):
        super().__init__(f"Merge conflict '{conflict_id}' not found", code="CONFLICT_NOT_FOUND")
        self.conflict_id = conflict_id


# =============================================================================
# Validation
# =============================================================================

class ScenarioValidationError(ScenarioError):
    """Base for rejected writes and merge requests."""

    def __init__(self, message: str, code: str = "SCENARIO_VALIDATION"):
        super().__init__(message, code=code)


class ScenarioNotWritableError(ScenarioValidationError):
    """Raised when writing into an archived or merged scenario."""

    status_code = 409

    def __init__(self, scenario_id: str, status: str, action: str = "write to"):
        super().__init__(
            f"Cannot {action} scenario '{scenario_id}': status is '{status}'",
            code="SCENARIO_NOT_WRITABLE",
        )
        self.scenario_id = scenario_id
        self.status = status


class BaseRecordNotFoundError(ScenarioValidationError):
    """Raised when an overlay's base reference is not visible where it must be."""

    def __init__(self, entity_type: str, base_id: str, scenario_id: str):
        super().__init__(
            f"{entity_type} '{base_id}' is not part of the effective plan of scenario '{scenario_id}'",
            code="BASE_RECORD_NOT_FOUND",
        )
        self.entity_type = entity_type
        self.base_id = base_id
        self.scenario_id = scenario_id


class DuplicateBaselineError(ScenarioValidationError):
    """Raised when a second parentless scenario would be created."""

    status_code = 409

    def __init__(self, existing_id: str):
        super().__init__(
            f"A baseline scenario already exists ('{existing_id}'); new scenarios must fork from it",
            code="DUPLICATE_BASELINE",
        )
        self.existing_id = existing_id


class InvalidMergeError(ScenarioValidationError):
    """Raised when a merge request breaks a precondition."""

    def __init__(self, message: str):
        super().__init__(message, code="INVALID_MERGE")


class ConflictAlreadyResolvedError(ScenarioValidationError):
    """Raised when resolving a conflict that is no longer pending."""

    status_code = 409

    def __init__(self, conflict_id: str, resolution: str):
        super().__init__(
            f"Merge conflict '{conflict_id}' is already resolved as '{resolution}'",
            code="CONFLICT_ALREADY_RESOLVED",
        )
        self.conflict_id = conflict_id
        self.resolution = resolution


# =============================================================================
# Structure
# =============================================================================

class ScenarioStructureError(ScenarioError):
    """Base for broken scenario hierarchies."""

    status_code = 422

    def __init__(self, message: str, code: str = "SCENARIO_STRUCTURE"):
        super().__init__(message, code=code)


class NoCommonAncestorError(ScenarioStructureError):
    """Raised when two scenarios do not share an ancestor."""

    def __init__(self, source_id: str, target_id: str):
        super().__init__(
            f"Scenarios '{source_id}' and '{target_id}' share no common ancestor",
            code="NO_COMMON_ANCESTOR",
        )
        self.source_id = source_id
        self.target_id = target_id


class CyclicScenarioChainError(ScenarioStructureError):
    """Raised when following parent pointers revisits a scenario."""

    def __init__(self, chain: List[str]):
        super().__init__(
            f"Cyclic parent chain: {' -> '.join(chain)}",
            code="CYCLIC_SCENARIO_CHAIN",
        )
        self.chain = chain


class BrokenScenarioChainError(ScenarioStructureError):
    """Raised when a parent pointer leads to a missing scenario."""

    def __init__(self, scenario_id: str, missing_parent_id: Optional[str]):
        super().__init__(
            f"Scenario '{scenario_id}' points at missing parent '{missing_parent_id}'",
            code="BROKEN_SCENARIO_CHAIN",
        )
        self.scenario_id = scenario_id
        self.missing_parent_id = missing_parent_id
