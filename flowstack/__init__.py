"""Flowstack - workflow composition and validation engine."""

from .catalog import WorkflowCatalog
from .errors import (
    AlreadyInProgress,
    CyclicDependency,
    FlowstackError,
    GateCheckFailed,
    InvalidTransition,
    MalformedWorkflow,
    NoActiveItem,
    NothingPending,
    UnknownWorkflow,
)
from .gates import CommandCheckRunner, StaticCheckRunner, ValidationGate
from .models import CompositionRequest, ResolvedPlan, WorkflowDocument
from .resolver import resolve
from .tracker import ExecutionTracker
from .workflow import WorkflowManager

__version__ = "0.1.0"

__all__ = [
    "WorkflowCatalog",
    "WorkflowDocument",
    "CompositionRequest",
    "ResolvedPlan",
    "resolve",
    "ExecutionTracker",
    "ValidationGate",
    "CommandCheckRunner",
    "StaticCheckRunner",
    "WorkflowManager",
    "FlowstackError",
    "MalformedWorkflow",
    "CyclicDependency",
    "UnknownWorkflow",
    "InvalidTransition",
    "AlreadyInProgress",
    "NoActiveItem",
    "NothingPending",
    "GateCheckFailed",
]
