"""Adaptive dataset transformation: DuckDB first, chunks second, memory last."""

from ben_speed.base import RelationalStep, Step
from ben_speed.chunked import ChunkPlan, plan_chunks, run_chunked
from ben_speed.classifier import Compatibility, classify, not_pushable, pushable
from ben_speed.config import SpeedConfig
from ben_speed.dispatcher import Plan, Route, choose_route, execute, plan, speed
from ben_speed.events import LoggingObserver, SpeedEvent
from ben_speed.exceptions import (
    ChunkExecutionError,
    ConfigurationError,
    InvalidInputError,
    RelationalExecutionError,
    RoutingError,
    SpeedError,
)
from ben_speed.memory import run_in_memory
from ben_speed.pipeline import Pipeline
from ben_speed.processors import (
    SQL,
    Aggregate,
    Filter,
    Join,
    MapBatches,
    Rename,
    Select,
    Sort,
    StringTransform,
    WithColumn,
)
from ben_speed.relational import run_relational
from ben_speed.resources import ResourceBudget, ResourceProbe, probe

__version__ = "0.1.0"

__all__ = [
    # Entry point
    "speed",
    "plan",
    "execute",
    "Plan",
    "Route",
    "choose_route",
    # Pipelines
    "Pipeline",
    "Step",
    "RelationalStep",
    "Filter",
    "Select",
    "Rename",
    "WithColumn",
    "StringTransform",
    "Sort",
    "Aggregate",
    "Join",
    "SQL",
    "MapBatches",
    # Classification
    "Compatibility",
    "classify",
    "pushable",
    "not_pushable",
    # Executors
    "run_relational",
    "run_chunked",
    "run_in_memory",
    "ChunkPlan",
    "plan_chunks",
    # Resources
    "ResourceBudget",
    "ResourceProbe",
    "probe",
    # Configuration and events
    "SpeedConfig",
    "SpeedEvent",
    "LoggingObserver",
    # Errors
    "SpeedError",
    "ConfigurationError",
    "InvalidInputError",
    "RelationalExecutionError",
    "ChunkExecutionError",
    "RoutingError",
]
