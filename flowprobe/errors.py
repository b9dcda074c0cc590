# flowprobe/errors.py
"""
Exception hierarchy for the workflow engine.

Only malformed top-level input escapes a run. Everything raised while a step
executes is caught by the step executor and turned into an errored result.
"""

from __future__ import annotations

from typing import Any, Optional


class WorkflowError(Exception):
    """Base exception for workflow engine errors."""
    pass


class WorkflowValidationError(WorkflowError):
    """Raised when the workflow document does not have a valid structure."""
    def __init__(self, message: str, errors: Optional[Any] = None):
        self.errors = errors
        super().__init__(message)


class IncludeError(WorkflowError):
    """Raised when an included workflow or $ref target cannot be loaded."""
    def __init__(self, path: str, original_error: Exception):
        self.path = path
        self.original_error = original_error
        super().__init__(f"Cannot load '{path}': {original_error}")


class CredentialError(WorkflowError):
    """Raised when auth material cannot be resolved."""
    pass


class TestDataError(WorkflowError):
    """Raised when a test data table cannot be read."""
    __test__ = False


class TransportError(WorkflowError):
    """Raised by transports on protocol level failures."""
    def __init__(self, protocol: str, message: str):
        self.protocol = protocol
        super().__init__(f"{protocol}: {message}")
