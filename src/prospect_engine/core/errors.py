"""Errors raised by the scoring and assignment engine."""

from typing import Optional


class EngineError(Exception):
    """Base error carrying the prospect and component that failed."""

    def __init__(
        self,
        message: str,
        prospect_id: Optional[str] = None,
        component: str = "engine",
    ):
        super().__init__(message)
        self.message = message
        self.prospect_id = prospect_id
        self.component = component

    def __str__(self) -> str:
        if self.prospect_id:
            return f"[{self.component}] {self.message} (prospect {self.prospect_id})"
        return f"[{self.component}] {self.message}"


class EventValidationError(EngineError, ValueError):
    """An inbound event was malformed or referenced an unknown prospect."""

    def __init__(self, message: str, prospect_id: Optional[str] = None):
        super().__init__(message, prospect_id=prospect_id, component="collector")


class ProspectNotFoundError(EngineError, LookupError):
    """No record exists for the requested prospect."""

    def __init__(self, prospect_id: str, component: str = "scoring"):
        super().__init__("Prospect not found", prospect_id=prospect_id, component=component)


class IntegrationNotFoundError(EngineError, LookupError):
    """No engagement history exists for the requested integration."""

    def __init__(self, integration_id: str, prospect_id: Optional[str] = None):
        super().__init__(
            f"Integration {integration_id} not found",
            prospect_id=prospect_id,
            component="scoring",
        )
        self.integration_id = integration_id


class SnapshotVersionError(EngineError, ValueError):
    """An analysis snapshot did not advance the version for its type."""

    def __init__(self, message: str, prospect_id: Optional[str] = None):
        super().__init__(message, prospect_id=prospect_id, component="lifecycle")
