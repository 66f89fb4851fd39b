"""
Analysis Orchestrator
Drives one table through PENDING -> ANALYZING -> COMPLETED | FAILED:
sample, describe every column concurrently, summarize the table, persist.
"""
from __future__ import annotations

import re
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from ..adapters import BaseEngineAdapter
from ..config import AnalysisConfig
from ..connection import ConnectionResolver, ResolvedConnection
from ..llm_client import (
    ColumnDescriptionRequest,
    ReasoningService,
    TableAnalysisRequest,
    TableField,
    fallback_column_description,
)
from ..models import (
    AIDescription,
    AnalysisResult,
    AnalysisStatus,
    Column,
    ColumnFinding,
    DataSource,
    Environment,
    Table,
    utcnow,
)
from ..store import MetadataStore
from ..utils import (
    AnalysisFailedError,
    ConfigurationError,
    CredentialsUnavailableError,
    EngineConnectionError,
    ErrorContext,
    PipelineMetrics,
    RecordNotFoundError,
    UnsupportedEngineError,
    get_correlation_id,
    get_logger,
    log_context,
    log_operation,
    snapshot_context,
)
from .sampler import SampleSet, Sampler

logger = get_logger(__name__)

NO_SAMPLE_NOTE = "Note: Analysis performed without sample data due to database connection issues."
STALE_ANALYSIS_ERROR = "Analysis did not finish and was marked failed by stale-analysis recovery"

AdapterFactory = Callable[[ResolvedConnection], BaseEngineAdapter]

# Setup failures end the run with FAILED instead of raising
SETUP_ERRORS = (
    CredentialsUnavailableError,
    ConfigurationError,
    UnsupportedEngineError,
    EngineConnectionError,
)

_RECOMMENDATION_SECTIONS = ("data quality", "usage recommendations")
_HEADING = re.compile(
    r"^\s*(?:#+\s*)?(?:\d+[.)]\s*)?\**\s*"
    r"(business purpose|data patterns|data quality|usage recommendations|potential relationships)"
    r"\s*\**\s*:?\s*\**\s*(.*)$",
    re.IGNORECASE,
)
_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+(.+?)\s*$")


def extract_recommendations(content: str, limit: int = 10) -> List[str]:
    """Statements listed under the Data Quality and Usage Recommendations sections"""
    recommendations: List[str] = []
    collecting = False
    for line in (content or "").splitlines():
        heading = _HEADING.match(line)
        if heading:
            collecting = heading.group(1).lower() in _RECOMMENDATION_SECTIONS
            inline = heading.group(2).strip()
            if collecting and inline:
                recommendations.append(inline)
            continue
        bullet = _BULLET.match(line)
        if collecting and bullet:
            text = bullet.group(1).strip().strip("*").strip()
            if text:
                recommendations.append(text)
    return recommendations[:limit]


def combine_usage(*usages: Dict[str, int]) -> Dict[str, int]:
    total = {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}
    for usage in usages:
        for key in total:
            total[key] += int((usage or {}).get(key, 0) or 0)
    return total


@dataclass
class ColumnOutcome:
    """Gathered result of one column task"""
    finding: ColumnFinding
    usage: Dict[str, int] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.finding.error is not None


class AnalysisOrchestrator:
    """
    Runs table analyses against the metadata store

    The ANALYZING status is persisted before any other work so an
    interrupted run stays observable. Sampling, per-column and table-level
    reasoning failures degrade the result; credential and connection setup
    failures end the run as FAILED. Any other error marks the table FAILED
    and is raised as AnalysisFailedError.

    Two concurrent runs on the same table are not coordinated; the last
    writer's status and result win.
    """

    def __init__(
        self,
        store: MetadataStore,
        resolver: ConnectionResolver,
        reasoning: ReasoningService,
        config: Optional[AnalysisConfig] = None,
        adapter_factory: Optional[AdapterFactory] = None,
    ):
        self.store = store
        self.resolver = resolver
        self.reasoning = reasoning
        self.config = config or AnalysisConfig()
        self.adapter_factory = adapter_factory or (lambda resolved: resolved.create_adapter(self.config))

    # Single table

    def analyze_table(self, table_id: str, custom_prompt: Optional[str] = None) -> Table:
        """
        Analyze one table and return its final record

        Raises:
            RecordNotFoundError: The table, its environment or data source is missing
            AnalysisFailedError: An unexpected error ended the run (table is FAILED)
        """
        table = self.store.get_table(table_id)
        environment = self.store.get_environment(table.environment_id)
        data_source = self.store.get_data_source(environment.data_source_id)
        custom_prompt = custom_prompt or environment.custom_prompt

        with log_context(
            correlation_id=get_correlation_id() or str(uuid.uuid4()),
            environment_id=environment.id,
            table_id=table.id,
        ):
            start = time.time()
            self.store.update_table_analysis(table.id, AnalysisStatus.ANALYZING)

            with log_operation(logger, "table_analysis", table=table.qualified_name) as op:
                try:
                    adapter = self._open_adapter(data_source, environment)
                except SETUP_ERRORS as e:
                    op["status"] = AnalysisStatus.FAILED.value
                    failed = self._fail(table, e, start)
                    if failed is None:
                        raise self._analysis_failed(table, environment, data_source, e) from e
                    return failed
                except Exception as e:
                    self._fail(table, e, start)
                    raise self._analysis_failed(table, environment, data_source, e) from e

                try:
                    result = self._run(table, adapter, custom_prompt, start)
                except Exception as e:
                    self._fail(table, e, start)
                    raise self._analysis_failed(table, environment, data_source, e) from e
                op["status"] = result.analysis_status.value
                return result

    def _open_adapter(self, data_source: DataSource, environment: Environment) -> BaseEngineAdapter:
        resolved = self.resolver.resolve(data_source, environment)
        return self.adapter_factory(resolved)

    @staticmethod
    def _analysis_failed(
        table: Table,
        environment: Environment,
        data_source: DataSource,
        error: Exception,
    ) -> AnalysisFailedError:
        return AnalysisFailedError(
            f"Analysis failed for table '{table.name}': {error}",
            table_id=table.id,
            context=ErrorContext(
                environment_id=environment.id,
                data_source_id=data_source.id,
                table_name=table.qualified_name,
            ),
            original_error=error,
        )

    def _fail(self, table: Table, error: Exception, start: float) -> Optional[Table]:
        """Record the FAILED status; None when the store itself refuses the write"""
        message = getattr(error, "message", None) or str(error)
        logger.error(
            f"Analysis failed for {table.qualified_name}: {message}",
            extra={"extra_fields": {"error_type": type(error).__name__}}
        )
        category = getattr(getattr(error, "category", None), "value", "analysis")
        PipelineMetrics.record_error(type(error).__name__, category)
        PipelineMetrics.record_table_analysis(time.time() - start, AnalysisStatus.FAILED.value)
        try:
            return self.store.update_table_analysis(
                table.id,
                AnalysisStatus.FAILED,
                result={"error": message, "failed_at": utcnow().isoformat()},
            )
        except Exception as store_error:
            logger.error(
                f"Could not record FAILED status for {table.qualified_name}: {store_error}",
                extra={"extra_fields": {
                    "error_type": type(store_error).__name__,
                    "analysis_error": message,
                }},
                exc_info=True,
            )
            PipelineMetrics.record_error(type(store_error).__name__, "store")
            return None

    def _run(self, table: Table, adapter: BaseEngineAdapter, custom_prompt: Optional[str], start: float) -> Table:
        samples = Sampler(adapter, self.config).sample(table.name, table.schema)
        note = NO_SAMPLE_NOTE if samples.is_empty else None
        row_count = samples.row_count or table.row_count or 0
        columns = self.store.list_columns(table.id)

        outcomes = self._describe_columns(table, columns, samples, custom_prompt)
        summary, table_usage = self._summarize(table, columns, samples, row_count, note)

        result = AnalysisResult(
            summary=summary,
            column_findings=[o.finding for o in outcomes],
            suggested_improvements=extract_recommendations(summary),
            usage=combine_usage(table_usage, *(o.usage for o in outcomes)),
            row_count=row_count,
            sampled_rows=samples.sampled_rows,
            note=note,
        )
        updated = self.store.update_table_analysis(
            table.id,
            AnalysisStatus.COMPLETED,
            result=result.to_dict(),
            description=summary[: self.config.description_max_length],
        )

        failed = sum(1 for o in outcomes if o.failed)
        logger.info(
            f"Analyzed {table.qualified_name}",
            extra={"extra_fields": {
                "columns": len(outcomes),
                "failed_columns": failed,
                "sampled_rows": samples.sampled_rows,
                "total_tokens": result.usage["total_tokens"],
            }}
        )
        PipelineMetrics.record_table_analysis(time.time() - start, AnalysisStatus.COMPLETED.value)
        return updated

    # Column fan-out

    def _describe_columns(
        self,
        table: Table,
        columns: List[Column],
        samples: SampleSet,
        custom_prompt: Optional[str],
    ) -> List[ColumnOutcome]:
        if not columns:
            return []
        context = snapshot_context()
        workers = min(self.config.max_column_workers, len(columns))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="schemalens-column") as executor:
            futures = [
                executor.submit(self._describe_column, context, table, column, samples, custom_prompt)
                for column in columns
            ]
            return [future.result() for future in futures]

    def _describe_column(
        self,
        context: Dict[str, str],
        table: Table,
        column: Column,
        samples: SampleSet,
        custom_prompt: Optional[str],
    ) -> ColumnOutcome:
        with log_context(**context):
            request = ColumnDescriptionRequest(
                table_name=table.name,
                column_name=column.name,
                data_type=column.data_type,
                is_nullable=column.is_nullable,
                is_primary_key=column.is_primary_key,
                sample_values=samples.values_for(column.name, self.config.prompt_sample_values),
                custom_prompt=custom_prompt,
            )
            try:
                described = self.reasoning.generate_brief_column_description(request)
                description = AIDescription(
                    purpose=described.description,
                    sample_value=described.example_value,
                    data_pattern=described.value_type,
                )
                self.store.update_column_description(column.id, description)
            except Exception as e:
                logger.warning(
                    f"Column description failed for {column.name}: {e}",
                    extra={"extra_fields": {"column": column.name, "error_type": type(e).__name__}}
                )
                PipelineMetrics.record_column_description("failed")
                return self._fallback_outcome(column, e)

            PipelineMetrics.record_column_description("described" if described.parsed else "fallback")
            return ColumnOutcome(
                finding=ColumnFinding(
                    column=column.name,
                    purpose=description.purpose,
                    sample_value=description.sample_value,
                    data_pattern=description.data_pattern,
                ),
                usage=described.usage,
            )

    def _fallback_outcome(self, column: Column, error: Exception) -> ColumnOutcome:
        fallback = fallback_column_description(column.name, column.data_type)
        # keep a description from an earlier run rather than overwrite it with a guess
        if column.ai_description is None:
            try:
                self.store.update_column_description(column.id, AIDescription(
                    purpose=fallback.description,
                    sample_value=fallback.example_value,
                    data_pattern=fallback.value_type,
                ))
            except Exception as store_error:
                logger.warning(f"Could not store fallback description for {column.name}: {store_error}")
        return ColumnOutcome(
            finding=ColumnFinding(
                column=column.name,
                purpose=fallback.description,
                sample_value=fallback.example_value,
                data_pattern=fallback.value_type,
                error=str(error),
            ),
        )

    # Table summary

    def _summarize(
        self,
        table: Table,
        columns: List[Column],
        samples: SampleSet,
        row_count: int,
        note: Optional[str],
    ) -> Tuple[str, Dict[str, int]]:
        request = TableAnalysisRequest(
            table_name=table.name,
            fields=[
                TableField(
                    name=c.name,
                    data_type=c.data_type,
                    is_nullable=c.is_nullable,
                    is_primary_key=c.is_primary_key,
                    sample_values=samples.values_for(c.name, self.config.prompt_sample_values),
                )
                for c in columns
            ],
            row_count=row_count,
            note=note,
        )
        try:
            analysis = self.reasoning.analyze_table(request)
        except Exception as e:
            logger.warning(
                f"Table-level analysis failed for {table.qualified_name}, using fallback summary: {e}",
                extra={"extra_fields": {"error_type": type(e).__name__}}
            )
            PipelineMetrics.record_error(type(e).__name__, "llm")
            return f"AI analysis completed for {table.name}", {}
        return analysis.content or f"AI analysis completed for {table.name}", analysis.usage

    # Batch and recovery

    def analyze_tables(self, table_ids: List[str], custom_prompt: Optional[str] = None) -> Dict[str, Table]:
        """
        Analyze several tables concurrently

        A failure in one table never affects the others. Returns the final
        record per table id; ids that do not exist are left out.
        """
        if not table_ids:
            return {}
        context = snapshot_context()

        def run(table_id: str) -> Optional[Table]:
            with log_context(**context):
                try:
                    return self.analyze_table(table_id, custom_prompt)
                except RecordNotFoundError as e:
                    logger.warning(f"Skipping analysis: {e.message}")
                    return None
                except AnalysisFailedError:
                    return self.store.get_table(table_id)
                except Exception as e:
                    logger.error(
                        f"Analysis of table {table_id} aborted: {e}",
                        extra={"extra_fields": {"error_type": type(e).__name__}}
                    )
                    PipelineMetrics.record_error(type(e).__name__, "analysis")
                    return None

        workers = min(self.config.max_table_workers, len(table_ids))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="schemalens-table") as executor:
            results = list(executor.map(run, table_ids))
        return {table.id: table for table in results if table is not None}

    def recover_stale_analyses(self, now: Optional[datetime] = None) -> List[Table]:
        """Mark tables stuck in ANALYZING longer than the configured window as FAILED"""
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self.config.stale_analysis_after_seconds)
        recovered = []
        for table in self.store.list_tables_by_status(AnalysisStatus.ANALYZING):
            if table.updated_at > cutoff:
                continue
            recovered.append(self.store.update_table_analysis(
                table.id,
                AnalysisStatus.FAILED,
                result={"error": STALE_ANALYSIS_ERROR, "failed_at": now.isoformat()},
            ))
            logger.warning(
                f"Recovered stale analysis for {table.qualified_name}",
                extra={"extra_fields": {"table_id": table.id, "updated_at": table.updated_at.isoformat()}}
            )
        return recovered
