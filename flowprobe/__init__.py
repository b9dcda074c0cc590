# flowprobe/__init__.py
"""
flowprobe: declarative workflow engine for HTTP, gRPC and SSE checks.

    from flowprobe import WorkflowEngine, WorkflowOptions

    result = WorkflowEngine(WorkflowOptions(secrets={"token": "..."})).run_file("api.yml")
    print(result.passed)
"""

from flowprobe.engine import (
    WorkflowEngine,
    WorkflowOptions,
    load_workflow_file,
    load_workflow_yaml,
    run_from_file,
    run_from_yaml,
    run_workflow,
)
from flowprobe.errors import (
    CredentialError,
    IncludeError,
    TestDataError,
    TransportError,
    WorkflowError,
    WorkflowValidationError,
)
from flowprobe.matcher import check, check_result
from flowprobe.models import Workflow
from flowprobe.results import CheckResult, StepResult, StepStatus, TestResult, WorkflowResult
from flowprobe.transports.base import Transports

__version__ = "1.0.0"

__all__ = [
    "WorkflowEngine",
    "WorkflowOptions",
    "Workflow",
    "Transports",
    "load_workflow_file",
    "load_workflow_yaml",
    "run_from_file",
    "run_from_yaml",
    "run_workflow",
    "check",
    "check_result",
    "CheckResult",
    "StepResult",
    "StepStatus",
    "TestResult",
    "WorkflowResult",
    "WorkflowError",
    "WorkflowValidationError",
    "IncludeError",
    "CredentialError",
    "TestDataError",
    "TransportError",
]
