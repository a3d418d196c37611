"""Reconciliation core: from a configuration document to committed state.

Layered flow:
1) build a validated resource graph from the configuration document
2) diff the graph against the last committed snapshot
3) schedule the change set into batches of independent steps
4) execute the batches against provider clients
5) commit succeeded results under the state lock
"""

from __future__ import annotations

from .builder import BuildGraph, build
from .changes import ChangeAction, ChangeEntry, ChangeSet
from .diff import DiffStates, changed_attributes, diff
from .engine import PlannedRun, ReconciliationEngine, check_providers
from .execute import ApplyError, ApplyExecutor, ApplyResult, Outcome
from .graph import ResourceGraph
from .refresh import Refresher, RefreshState, refreshed_state
from .report import NodeReport, RunReport, build_report, render_plan
from .retry import Attempts, backoff_delay
from .schedule import ExecutionPlan, PlanStep, ScheduleChanges, StepAction, schedule
from .state_store import StateStore, default_owner, merge_results

__all__ = [
    "ApplyError",
    "ApplyExecutor",
    "ApplyResult",
    "Attempts",
    "BuildGraph",
    "ChangeAction",
    "ChangeEntry",
    "ChangeSet",
    "DiffStates",
    "ExecutionPlan",
    "NodeReport",
    "Outcome",
    "PlanStep",
    "PlannedRun",
    "ReconciliationEngine",
    "RefreshState",
    "Refresher",
    "ResourceGraph",
    "RunReport",
    "ScheduleChanges",
    "StateStore",
    "StepAction",
    "backoff_delay",
    "build",
    "build_report",
    "changed_attributes",
    "check_providers",
    "default_owner",
    "diff",
    "merge_results",
    "refreshed_state",
    "render_plan",
    "schedule",
]
