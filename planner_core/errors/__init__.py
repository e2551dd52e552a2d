# =============================================================================
# planner_core/errors/__init__.py
# Centralized Error Handling for PlannerPro
# =============================================================================
#
# The Streamlit-facing handlers live in planner_core.errors.handlers and are
# imported explicitly by the UI shell, so the storage layer can use the
# exception types without importing Streamlit.

from .exceptions import (
    PlannerError,
    RecordValidationError,
    ImportFormatError,
    LocalStoreError,
    RemoteUnavailableError,
    ConfigurationError,
)

__all__ = [
    "PlannerError",
    "RecordValidationError",
    "ImportFormatError",
    "LocalStoreError",
    "RemoteUnavailableError",
    "ConfigurationError",
]
