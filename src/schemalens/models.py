"""
Metadata Records for schemalens
Data sources, environments, imported tables and columns, and inferred relationships
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .config import EngineType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class HealthStatus(str, Enum):
    """Result of the last connection test for an environment"""
    HEALTHY = "HEALTHY"
    UNHEALTHY = "UNHEALTHY"
    UNKNOWN = "UNKNOWN"


class AnalysisStatus(str, Enum):
    """Analysis state machine: PENDING -> ANALYZING -> COMPLETED | FAILED"""
    PENDING = "PENDING"
    ANALYZING = "ANALYZING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (AnalysisStatus.COMPLETED, AnalysisStatus.FAILED)


class RelationshipKind(str, Enum):
    """Cardinality of an inferred relationship"""
    ONE_TO_ONE = "ONE_TO_ONE"
    ONE_TO_MANY = "ONE_TO_MANY"
    MANY_TO_MANY = "MANY_TO_MANY"

    @classmethod
    def from_label(cls, label: Optional[str]) -> "RelationshipKind":
        """Map a free-form kind ("one_to_one", "one-to-many", ...); unknown kinds become ONE_TO_MANY"""
        key = str(label or "").strip().upper().replace("-", "_").replace(" ", "_")
        try:
            return cls(key)
        except ValueError:
            return cls.ONE_TO_MANY


@dataclass
class DataSource:
    """A registered connection target"""
    name: str
    engine: EngineType
    connection: Dict[str, Any] = field(default_factory=dict)
    credentials_key: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "engine": self.engine.value,
            "connection": self.connection,
            "credentials_key": self.credentials_key,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DataSource":
        return cls(
            id=data["id"],
            name=data["name"],
            engine=EngineType.parse(data["engine"]),
            connection=dict(data.get("connection") or {}),
            credentials_key=data.get("credentials_key"),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
            updated_at=_parse_dt(data.get("updated_at")) or utcnow(),
        )


@dataclass
class Environment:
    """Named connection profile under a data source (e.g. "production")"""
    data_source_id: str
    name: str
    connection: Dict[str, Any] = field(default_factory=dict)
    credentials_key: Optional[str] = None
    custom_prompt: Optional[str] = None
    health_status: HealthStatus = HealthStatus.UNKNOWN
    last_checked_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "data_source_id": self.data_source_id,
            "name": self.name,
            "connection": self.connection,
            "credentials_key": self.credentials_key,
            "custom_prompt": self.custom_prompt,
            "health_status": self.health_status.value,
            "last_checked_at": _iso(self.last_checked_at),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Environment":
        return cls(
            id=data["id"],
            data_source_id=data["data_source_id"],
            name=data["name"],
            connection=dict(data.get("connection") or {}),
            credentials_key=data.get("credentials_key"),
            custom_prompt=data.get("custom_prompt"),
            health_status=HealthStatus(data.get("health_status") or HealthStatus.UNKNOWN.value),
            last_checked_at=_parse_dt(data.get("last_checked_at")),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
        )


@dataclass
class AIDescription:
    """Generated column description: purpose, example value, value-pattern tag"""
    purpose: str
    sample_value: str
    data_pattern: str

    def __post_init__(self):
        for name in ("purpose", "sample_value", "data_pattern"):
            if not isinstance(getattr(self, name), str):
                raise TypeError(f"AIDescription.{name} must be a string")

    def to_dict(self) -> Dict[str, str]:
        return {
            "purpose": self.purpose,
            "sample_value": self.sample_value,
            "data_pattern": self.data_pattern,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["AIDescription"]:
        if not data:
            return None
        return cls(
            purpose=str(data.get("purpose", "")),
            sample_value=str(data.get("sample_value", "")),
            data_pattern=str(data.get("data_pattern", "")),
        )


@dataclass
class Table:
    """An imported table and its analysis state"""
    environment_id: str
    name: str
    schema: Optional[str] = None
    description: Optional[str] = None
    analysis_status: AnalysisStatus = AnalysisStatus.PENDING
    analysis_result: Optional[Dict[str, Any]] = None
    row_count: Optional[int] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "environment_id": self.environment_id,
            "name": self.name,
            "schema": self.schema,
            "description": self.description,
            "analysis_status": self.analysis_status.value,
            "analysis_result": self.analysis_result,
            "row_count": self.row_count,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Table":
        return cls(
            id=data["id"],
            environment_id=data["environment_id"],
            name=data["name"],
            schema=data.get("schema"),
            description=data.get("description"),
            analysis_status=AnalysisStatus(data.get("analysis_status") or AnalysisStatus.PENDING.value),
            analysis_result=data.get("analysis_result"),
            row_count=data.get("row_count"),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
            updated_at=_parse_dt(data.get("updated_at")) or utcnow(),
        )


@dataclass
class Column:
    """An imported column"""
    table_id: str
    name: str
    data_type: str
    is_nullable: bool = True
    is_primary_key: bool = False
    is_foreign_key: bool = False
    referenced_table: Optional[str] = None
    referenced_column: Optional[str] = None
    comment: Optional[str] = None
    ordinal_position: Optional[int] = None
    ai_description: Optional[AIDescription] = None
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "table_id": self.table_id,
            "name": self.name,
            "data_type": self.data_type,
            "is_nullable": self.is_nullable,
            "is_primary_key": self.is_primary_key,
            "is_foreign_key": self.is_foreign_key,
            "referenced_table": self.referenced_table,
            "referenced_column": self.referenced_column,
            "comment": self.comment,
            "ordinal_position": self.ordinal_position,
            "ai_description": self.ai_description.to_dict() if self.ai_description else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Column":
        return cls(
            id=data["id"],
            table_id=data["table_id"],
            name=data["name"],
            data_type=data.get("data_type") or "unknown",
            is_nullable=bool(data.get("is_nullable", True)),
            is_primary_key=bool(data.get("is_primary_key", False)),
            is_foreign_key=bool(data.get("is_foreign_key", False)),
            referenced_table=data.get("referenced_table"),
            referenced_column=data.get("referenced_column"),
            comment=data.get("comment"),
            ordinal_position=data.get("ordinal_position"),
            ai_description=AIDescription.from_dict(data.get("ai_description")),
        )


# (environment_id, source_table_id, target_table_id, source_column, target_column)
RelationshipKey = Tuple[str, str, str, str, str]


@dataclass
class Relationship:
    """Directed foreign-key-like link between two tables of one environment"""
    environment_id: str
    source_table_id: str
    source_column: str
    target_table_id: str
    target_column: str
    kind: RelationshipKind = RelationshipKind.ONE_TO_MANY
    confidence: Optional[float] = None
    description: Optional[str] = None
    example: Optional[str] = None
    is_verified: bool = False
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def unique_key(self) -> RelationshipKey:
        return (
            self.environment_id,
            self.source_table_id,
            self.target_table_id,
            self.source_column,
            self.target_column,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "environment_id": self.environment_id,
            "source_table_id": self.source_table_id,
            "source_column": self.source_column,
            "target_table_id": self.target_table_id,
            "target_column": self.target_column,
            "kind": self.kind.value,
            "confidence": self.confidence,
            "description": self.description,
            "example": self.example,
            "is_verified": self.is_verified,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Relationship":
        return cls(
            id=data["id"],
            environment_id=data["environment_id"],
            source_table_id=data["source_table_id"],
            source_column=data["source_column"],
            target_table_id=data["target_table_id"],
            target_column=data["target_column"],
            kind=RelationshipKind.from_label(data.get("kind")),
            confidence=data.get("confidence"),
            description=data.get("description"),
            example=data.get("example"),
            is_verified=bool(data.get("is_verified", False)),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
        )


@dataclass
class ColumnFinding:
    """Per-column entry of an analysis result"""
    column: str
    purpose: str
    sample_value: str
    data_pattern: str
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "column": self.column,
            "purpose": self.purpose,
            "sample_value": self.sample_value,
            "data_pattern": self.data_pattern,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class AnalysisResult:
    """Structured outcome of a completed table analysis"""
    summary: str
    column_findings: List[ColumnFinding] = field(default_factory=list)
    suggested_improvements: List[str] = field(default_factory=list)
    usage: Dict[str, int] = field(default_factory=dict)
    row_count: int = 0
    sampled_rows: int = 0
    note: Optional[str] = None
    analyzed_at: datetime = field(default_factory=utcnow)

    @property
    def columns_analyzed(self) -> int:
        return len(self.column_findings)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "summary": self.summary,
            "columns_analyzed": self.columns_analyzed,
            "column_findings": [f.to_dict() for f in self.column_findings],
            "suggested_improvements": list(self.suggested_improvements),
            "analyzed_at": _iso(self.analyzed_at),
            "usage": dict(self.usage),
            "row_count": self.row_count,
            "sampled_rows": self.sampled_rows,
        }
        if self.note:
            data["note"] = self.note
        return data
