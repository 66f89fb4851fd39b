"""
Sampler
Bounded, randomized row samples regrouped per column
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..adapters import BaseEngineAdapter, ColumnMeta
from ..config import AnalysisConfig
from ..utils import PipelineMetrics, get_logger

logger = get_logger(__name__)

MIN_SAMPLE_LIMIT = 10
MAX_SAMPLE_LIMIT = 100


@dataclass
class SampleSet:
    """Per-column sample values for one table"""
    column_values: Dict[str, List[str]] = field(default_factory=dict)
    row_count: int = 0
    schema_details: Dict[str, ColumnMeta] = field(default_factory=dict)
    sampled_rows: int = 0
    error: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.sampled_rows == 0

    def values_for(self, column: str, limit: Optional[int] = None) -> List[str]:
        values = self.column_values.get(column, [])
        return values[:limit] if limit is not None else list(values)


def clamp_limit(limit: int) -> int:
    return max(MIN_SAMPLE_LIMIT, min(MAX_SAMPLE_LIMIT, int(limit)))


class Sampler:
    """
    Samples a table for analysis

    Engine failures are logged and absorbed: the caller gets an empty
    SampleSet carrying the error text and continues without sample data.
    """

    def __init__(self, adapter: BaseEngineAdapter, config: Optional[AnalysisConfig] = None):
        self.adapter = adapter
        self.config = config or AnalysisConfig()

    def sample(self, table: str, schema: Optional[str] = None, limit: Optional[int] = None) -> SampleSet:
        limit = clamp_limit(limit if limit is not None else self.config.sample_limit)
        try:
            with self.adapter.session():
                row_count = self.adapter.count_rows(table, schema)
                rows = self.adapter.sample_rows(table, schema, limit=limit, row_count=row_count)
                details = self._schema_details(table, schema)
        except Exception as e:
            logger.warning(
                f"Sampling failed for {table}, continuing without sample data: {e}",
                extra={"extra_fields": {
                    "engine": self.adapter.engine_type.value,
                    "schema": schema,
                }}
            )
            PipelineMetrics.record_error(type(e).__name__, "sampling")
            return SampleSet(error=str(e))

        cap = self.config.per_column_value_cap
        column_values: Dict[str, List[str]] = {}
        for row in rows:
            for column, value in row.items():
                values = column_values.setdefault(column, [])
                if len(values) < cap:
                    values.append(value)
        for column in details:
            column_values.setdefault(column, [])

        logger.debug(
            f"Sampled {len(rows)} of {row_count} rows from {table}",
            extra={"extra_fields": {"limit": limit}}
        )
        return SampleSet(
            column_values=column_values,
            row_count=row_count,
            schema_details=details,
            sampled_rows=len(rows),
        )

    def _schema_details(self, table: str, schema: Optional[str]) -> Dict[str, ColumnMeta]:
        """Catalog metadata for the sampled columns; empty when the catalog query fails"""
        try:
            return {c.name: c for c in self.adapter.list_columns(table, schema)}
        except Exception as e:
            logger.warning(
                f"Column metadata unavailable for {table}, keeping sampled rows: {e}",
                extra={"extra_fields": {"engine": self.adapter.engine_type.value, "schema": schema}}
            )
            PipelineMetrics.record_error(type(e).__name__, "introspection")
            return {}
