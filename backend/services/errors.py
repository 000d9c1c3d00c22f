"""Tagged failures raised by the fitness services.

Collaborator failures are caught at the narrowest boundary that has a
fallback (weather -> default context, food search -> weaker ranking).
Anything without a safe fallback reaches the caller as one of these.
"""
from __future__ import annotations


class FitnessEngineError(Exception):
    """Base class for every tagged service failure."""

    tag = "engine_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.tag)
        self.message = message or self.tag


class PermissionDeniedError(FitnessEngineError):
    """The user has not shared a location."""

    tag = "permission_denied"


class UpstreamUnavailableError(FitnessEngineError):
    """A remote dependency (weather API, store) could not be reached."""

    tag = "upstream_unavailable"


class NotFoundError(FitnessEngineError):
    tag = "not_found"


class MalformedDataError(FitnessEngineError):
    """Cached or upstream data could not be parsed."""

    tag = "malformed_data"


class GoalGenerationError(FitnessEngineError):
    """A goal generation run was aborted; nothing from it was persisted."""

    tag = "goal_generation_failed"

    def __init__(self, user_id: str, cause: BaseException) -> None:
        self.user_id = user_id
        self.cause_tag = getattr(cause, "tag", type(cause).__name__)
        super().__init__(f"Goal generation failed for {user_id}: {cause}")
