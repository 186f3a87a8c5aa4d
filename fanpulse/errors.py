"""
Error taxonomy shared by every FanPulse component.

Each error carries a machine-readable ``kind`` so boundary layers (HTTP, CLI)
can render a structured failure without inspecting exception classes.
"""

from typing import Dict


class FanPulseError(Exception):
    """Base class for all domain errors."""

    kind = "fanpulse_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class BackendUnavailable(FanPulseError):
    """One scoring backend failed, timed out or is not configured."""

    kind = "backend_unavailable"

    def __init__(self, backend: str, message: str):
        super().__init__(f"{backend}: {message}")
        self.backend = backend


class AnalysisUnavailable(FanPulseError):
    """Both scoring backends failed for a single resolution."""

    kind = "analysis_unavailable"


class DuplicateItem(FanPulseError):
    """The source item identity key is already stored."""

    kind = "duplicate_item"

    def __init__(self, source_platform: str, source_id: str):
        super().__init__(f"Item {source_platform}:{source_id} already ingested")
        self.source_platform = source_platform
        self.source_id = source_id


class InsufficientData(FanPulseError):
    """Too little history to compute a trend."""

    kind = "insufficient_data"


class StoreUnavailable(FanPulseError):
    """The persistence layer could not be reached."""

    kind = "store_unavailable"


class InvalidText(FanPulseError):
    """Input text is empty after normalization."""

    kind = "invalid_text"


class RecordRejected(FanPulseError):
    """The store refused a well-formed request because of the data it carried."""

    kind = "record_rejected"
