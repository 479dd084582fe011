"""flipflap feature flag evaluation library."""

from .bootstrap import FlipflapRuntime, build_runtime
from .bucketing import calculate_bucket
from .cache import DEFAULT_TTL_SECONDS, FlagCache
from .config import CacheSection, FlipflapConfig, LogSection, MetricsSection, load
from .evaluator import evaluate, find_active_phase
from .exceptions import (
    ConfigError,
    ConfigErrorCodes,
    FlagDocumentError,
    FlagDocumentErrorCodes,
    FlagStoreError,
    FlagStoreErrorCodes,
    FlipflapError,
)
from .logger import new_logger
from .memory import InMemoryFlagCache, InMemoryFlagStore
from .models import (
    Environment,
    EnvironmentConfig,
    EvaluationContext,
    EvaluationResponse,
    EvaluationResult,
    Flag,
    Operator,
    Phase,
    ReasonCode,
)
from .rules import matches_context_rules, matches_operator
from .service import CallerContext, EvaluationService, FlagWriteService
from .store import FlagStore, MutableFlagStore

__all__ = [
    "CacheSection",
    "CallerContext",
    "ConfigError",
    "ConfigErrorCodes",
    "DEFAULT_TTL_SECONDS",
    "Environment",
    "EnvironmentConfig",
    "EvaluationContext",
    "EvaluationResponse",
    "EvaluationResult",
    "EvaluationService",
    "Flag",
    "FlagCache",
    "FlagDocumentError",
    "FlagDocumentErrorCodes",
    "FlagStore",
    "FlagStoreError",
    "FlagStoreErrorCodes",
    "FlagWriteService",
    "FlipflapConfig",
    "FlipflapError",
    "FlipflapRuntime",
    "InMemoryFlagCache",
    "InMemoryFlagStore",
    "LogSection",
    "MetricsSection",
    "MutableFlagStore",
    "Operator",
    "Phase",
    "ReasonCode",
    "build_runtime",
    "calculate_bucket",
    "evaluate",
    "find_active_phase",
    "load",
    "matches_context_rules",
    "matches_operator",
    "new_logger",
]
