"""
Utilities Package for schemalens
"""
from .logging import (
    setup_logging,
    get_logger,
    set_correlation_id,
    get_correlation_id,
    snapshot_context,
    clear_context,
    log_context,
    log_operation,
    redact,
)

from .errors import (
    ErrorSeverity,
    ErrorCategory,
    ErrorContext,
    SchemaLensError,
    EngineConnectionError,
    CredentialsUnavailableError,
    InsufficientTablesError,
    UnsupportedEngineError,
    LLMError,
    ReasoningServiceError,
    RecordNotFoundError,
    DependentRecordsError,
    AnalysisFailedError,
    ConfigurationError,
    classify_engine_error,
)

from .metrics import (
    MetricsCollector,
    get_metrics_collector,
    counter,
    timer,
    time_operation,
    PipelineMetrics,
)

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "set_correlation_id",
    "get_correlation_id",
    "snapshot_context",
    "clear_context",
    "log_context",
    "log_operation",
    "redact",
    # Errors
    "ErrorSeverity",
    "ErrorCategory",
    "ErrorContext",
    "SchemaLensError",
    "EngineConnectionError",
    "CredentialsUnavailableError",
    "InsufficientTablesError",
    "UnsupportedEngineError",
    "LLMError",
    "ReasoningServiceError",
    "RecordNotFoundError",
    "DependentRecordsError",
    "AnalysisFailedError",
    "ConfigurationError",
    "classify_engine_error",
    # Metrics
    "MetricsCollector",
    "get_metrics_collector",
    "counter",
    "timer",
    "time_operation",
    "PipelineMetrics",
]
