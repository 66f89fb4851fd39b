"""
Error Handling Module for schemalens
Defines the pipeline's exception taxonomy and classification helpers
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorSeverity(str, Enum):
    """Error severity levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """Error categories for classification"""
    CONNECTION = "connection"
    CREDENTIALS = "credentials"
    SCHEMA = "schema"
    REASONING = "reasoning"
    LLM = "llm"
    PERSISTENCE = "persistence"
    CONFIGURATION = "configuration"
    ANALYSIS = "analysis"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Where in the pipeline an error happened"""
    correlation_id: Optional[str] = None
    engine: Optional[str] = None
    data_source_id: Optional[str] = None
    environment_id: Optional[str] = None
    table_id: Optional[str] = None
    table_name: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "correlation_id": self.correlation_id,
            "engine": self.engine,
            "data_source_id": self.data_source_id,
            "environment_id": self.environment_id,
            "table_id": self.table_id,
            "table_name": self.table_name,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class SchemaLensError(Exception):
    """Base exception for schemalens"""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[ErrorContext] = None,
        recoverable: bool = True,
        suggestions: Optional[List[str]] = None,
        original_error: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.recoverable = recoverable
        self.suggestions = suggestions or []
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "suggestions": self.suggestions,
            "context": self.context.to_dict(),
            "original_error": str(self.original_error) if self.original_error else None,
        }

    def __str__(self) -> str:
        return f"[{self.category.value}] {self.message}"


class EngineConnectionError(SchemaLensError):
    """Engine unreachable, authentication rejected, or a query failed"""

    def __init__(
        self,
        message: str,
        engine: Optional[str] = None,
        diagnostic: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        original_error: Optional[BaseException] = None
    ):
        context = context or ErrorContext()
        if engine and not context.engine:
            context.engine = engine

        super().__init__(
            message=message,
            category=ErrorCategory.CONNECTION,
            severity=ErrorSeverity.HIGH,
            context=context,
            recoverable=True,
            suggestions=[
                "Check host, port and database name",
                "Verify the vaulted credentials for this environment",
                "Confirm the SSL mode matches the server configuration",
                "Ensure the database user can read the catalog views",
            ],
            original_error=original_error
        )
        self.engine = engine
        self.diagnostic = diagnostic or (str(original_error) if original_error else message)


class CredentialsUnavailableError(SchemaLensError):
    """No usable credentials could be produced for a connection"""

    def __init__(
        self,
        message: str,
        credentials_key: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        original_error: Optional[BaseException] = None
    ):
        suggestions = ["Configure a secret provider for the process"]
        if credentials_key:
            suggestions.append(f"Check that secret '{credentials_key}' exists and is readable")
        else:
            suggestions.append("Set a credentials key on the data source or environment")

        super().__init__(
            message=message,
            category=ErrorCategory.CREDENTIALS,
            severity=ErrorSeverity.HIGH,
            context=context,
            recoverable=True,
            suggestions=suggestions,
            original_error=original_error
        )
        self.credentials_key = credentials_key


class InsufficientTablesError(SchemaLensError):
    """Relationship inference needs at least two tables"""

    def __init__(
        self,
        message: str,
        table_count: int = 0,
        context: Optional[ErrorContext] = None
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.SCHEMA,
            severity=ErrorSeverity.LOW,
            context=context,
            recoverable=True,
            suggestions=["Import at least two tables into the environment"],
        )
        self.table_count = table_count


class UnsupportedEngineError(SchemaLensError):
    """Engine kind has no implementation for the requested operation"""

    def __init__(
        self,
        message: str,
        engine: Optional[str] = None,
        context: Optional[ErrorContext] = None
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.HIGH,
            context=context,
            recoverable=False,
            suggestions=[
                "Use one of: postgres, mysql, mssql, bigquery, databricks, db2",
            ],
        )
        self.engine = engine


class LLMError(SchemaLensError):
    """Bedrock invocation errors"""

    def __init__(
        self,
        message: str,
        model_id: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        original_error: Optional[BaseException] = None
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.LLM,
            severity=ErrorSeverity.HIGH,
            context=context,
            recoverable=True,
            suggestions=[
                "Check AWS credentials and permissions",
                "Verify Bedrock model availability in the region",
                "Check for throttling",
            ],
            original_error=original_error
        )
        self.model_id = model_id


class ReasoningServiceError(SchemaLensError):
    """The reasoning collaborator failed to produce an answer"""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        original_error: Optional[BaseException] = None
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.REASONING,
            severity=ErrorSeverity.MEDIUM,
            context=context,
            recoverable=True,
            suggestions=["Re-run the analysis once the reasoning service is available"],
            original_error=original_error
        )
        self.operation = operation


class RecordNotFoundError(SchemaLensError):
    """Requested metadata record does not exist"""

    def __init__(
        self,
        entity: str,
        record_id: str,
        context: Optional[ErrorContext] = None
    ):
        super().__init__(
            message=f"{entity} '{record_id}' not found",
            category=ErrorCategory.PERSISTENCE,
            severity=ErrorSeverity.LOW,
            context=context,
            recoverable=False,
        )
        self.entity = entity
        self.record_id = record_id


class DependentRecordsError(SchemaLensError):
    """A record cannot be removed while other records still reference it"""

    def __init__(
        self,
        entity: str,
        record_id: str,
        dependents: str,
        context: Optional[ErrorContext] = None
    ):
        super().__init__(
            message=f"{entity} '{record_id}' still has dependent {dependents}",
            category=ErrorCategory.PERSISTENCE,
            severity=ErrorSeverity.MEDIUM,
            context=context,
            recoverable=True,
            suggestions=[f"Delete the dependent {dependents} first"],
        )
        self.entity = entity
        self.record_id = record_id


class AnalysisFailedError(SchemaLensError):
    """Unexpected failure during a table analysis run (table was marked FAILED)"""

    def __init__(
        self,
        message: str,
        table_id: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        original_error: Optional[BaseException] = None
    ):
        context = context or ErrorContext()
        if table_id and not context.table_id:
            context.table_id = table_id

        super().__init__(
            message=message,
            category=ErrorCategory.ANALYSIS,
            severity=ErrorSeverity.HIGH,
            context=context,
            recoverable=True,
            suggestions=["Re-trigger the analysis for this table"],
            original_error=original_error
        )
        self.table_id = table_id


class ConfigurationError(SchemaLensError):
    """Configuration errors"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        original_error: Optional[BaseException] = None
    ):
        suggestions = ["Review configuration settings"]
        if config_key:
            suggestions.append(f"Check configuration for key: {config_key}")

        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.HIGH,
            context=context,
            recoverable=False,
            suggestions=suggestions,
            original_error=original_error
        )
        self.config_key = config_key


_AUTH_TERMS = ("password", "authentication", "login failed", "access denied", "permission denied")
_NETWORK_TERMS = ("refused", "timeout", "timed out", "could not connect", "unreachable", "host")


def classify_engine_error(error: BaseException, engine: str) -> EngineConnectionError:
    """Wrap a raw driver exception, prefixing a short diagnosis"""
    if isinstance(error, EngineConnectionError):
        return error

    text = str(error).strip() or error.__class__.__name__
    lowered = text.lower()

    if any(term in lowered for term in _AUTH_TERMS):
        message = f"{engine} authentication failed: {text}"
    elif any(term in lowered for term in _NETWORK_TERMS):
        message = f"{engine} server unreachable: {text}"
    else:
        message = f"{engine} query failed: {text}"

    return EngineConnectionError(
        message=message,
        engine=engine,
        diagnostic=text,
        original_error=error,
    )
