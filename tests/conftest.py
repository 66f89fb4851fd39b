"""
Shared fixtures: a scripted database behind the real PostgreSQL adapter and a
deterministic reasoning service
"""
import os
import re
import sys
import threading

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from schemalens.adapters import PostgreSQLAdapter
from schemalens.config import AnalysisConfig, ConnectionConfig, DatabaseCredentials
from schemalens.connection import ConnectionResolver
from schemalens.llm_client import (
    ColumnDescription,
    ReasoningService,
    RelationshipAnalysis,
    TableAnalysis,
    categorize_data_type,
)
from schemalens.pipeline import AnalysisOrchestrator, CatalogService, RelationshipInferrer
from schemalens.store import InMemoryMetadataStore
from schemalens.utils import ReasoningServiceError, get_metrics_collector
from schemalens.vault import SecretManager, StaticSecretProvider

STUB_USAGE = {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}


class FakeCursor:
    def __init__(self, database):
        self.database = database
        self.description = None
        self.rowcount = -1
        self._rows = []

    def execute(self, sql, params=None):
        columns, rows = self.database.handle(sql, params)
        self.description = [(name,) for name in columns] if columns else None
        self._rows = rows
        self.rowcount = len(rows)

    def fetchall(self):
        return list(self._rows)

    def close(self):
        pass


class FakeConnection:
    def __init__(self, database):
        self.database = database
        self.closed = 0

    def cursor(self):
        return FakeCursor(self.database)

    def rollback(self):
        pass

    def close(self):
        self.closed = 1


class FakeDatabase:
    """
    Scripted PostgreSQL catalog and data

    `failures` names the statements that should raise: connect, schemata,
    tables, columns, foreign_keys, count, random, block, limit.
    """

    def __init__(self, schemas=("public",)):
        self.schemas = list(schemas)
        self.tables = {}
        self.failures = set()
        self.statements = []
        self.connections = 0
        self.open_connections = 0
        self._lock = threading.Lock()

    def add_table(self, name, columns, rows=(), schema="public", description=None, row_count=None,
                  foreign_keys=None):
        """columns: (name, data_type, nullable, is_primary_key) tuples"""
        self.tables[(schema, name)] = {
            "columns": list(columns),
            "rows": [dict(r) for r in rows],
            "description": description,
            "row_count": row_count,
            "foreign_keys": dict(foreign_keys or {}),
        }

    def connect(self):
        if "connect" in self.failures:
            raise Exception('FATAL: password authentication failed for user "analyst"')
        with self._lock:
            self.connections += 1
            self.open_connections += 1
        return FakeConnection(self)

    def closed(self):
        with self._lock:
            self.open_connections -= 1

    def _fail(self, kind):
        if kind in self.failures:
            raise Exception(f"scripted {kind} failure")

    def _table_from_sql(self, sql):
        match = re.search(r'FROM "([^"]+)"\."([^"]+)"', sql)
        return self.tables[(match.group(1), match.group(2))]

    def handle(self, sql, params):
        with self._lock:
            self.statements.append(sql)
        text = " ".join(sql.split())

        if text in ("SELECT 1", "SHOW server_version"):
            return ["value"], [("15.4",)] if "server_version" in text else [(1,)]

        if "information_schema.schemata" in text:
            self._fail("schemata")
            return ["schema_name"], [(s,) for s in self.schemas + ["information_schema", "pg_catalog"]]

        if "FROM information_schema.tables t" in text:
            self._fail("tables")
            return (
                ["table_schema", "table_name", "description", "row_count"],
                [
                    (schema, name, t["description"], t["row_count"] if t["row_count"] is not None else len(t["rows"]))
                    for (schema, name), t in sorted(self.tables.items())
                ],
            )

        if "'FOREIGN KEY'" in text:
            self._fail("foreign_keys")
            table = self.tables[(params[1], params[0])]
            return (
                ["column_name", "referenced_table", "referenced_column"],
                [(column, ref[0], ref[1]) for column, ref in table["foreign_keys"].items()],
            )

        if "FROM information_schema.columns c" in text:
            self._fail("columns")
            table = self.tables[(params[1], params[0])]
            return (
                ["column_name", "data_type", "is_nullable", "column_default", "max_length",
                 "numeric_precision", "numeric_scale", "ordinal_position", "column_comment", "is_primary_key"],
                [
                    (name, data_type, "YES" if nullable else "NO", None, None, None, None, index + 1, None, pk)
                    for index, (name, data_type, nullable, pk) in enumerate(table["columns"])
                ],
            )

        table = self._table_from_sql(text)
        if "COUNT(*)" in text:
            self._fail("count")
            return ["row_count"], [(table["row_count"] if table["row_count"] is not None else len(table["rows"]),)]

        if "TABLESAMPLE" in text:
            self._fail("block")
        elif "RANDOM()" in text:
            self._fail("random")
        else:
            self._fail("limit")

        limit = int(re.search(r"LIMIT (\d+)", text).group(1))
        columns = [c[0] for c in table["columns"]]
        rows = [tuple(r.get(c) for c in columns) for r in table["rows"][:limit]]
        return columns, rows


class ScriptedPostgresAdapter(PostgreSQLAdapter):
    """The real PostgreSQL adapter bound to a FakeDatabase instead of psycopg2"""

    def __init__(self, config, credentials=None, large_table_threshold=10000, database=None):
        super().__init__(config, credentials, large_table_threshold)
        self.database = database

    def connect(self):
        self._connection = self.database.connect()

    def disconnect(self):
        if self._connection is not None:
            self.database.closed()
        super().disconnect()


class StubReasoningService(ReasoningService):
    """Deterministic reasoning: descriptions derive from names and types"""

    def __init__(self, fail_columns=(), fail_table=False, relationships=None, analysis="Tables are linked"):
        self.fail_columns = set(fail_columns)
        self.fail_table = fail_table
        self.relationships = list(relationships or [])
        self.analysis = analysis
        self.column_requests = []
        self.table_requests = []
        self.relationship_requests = []
        self._lock = threading.Lock()

    def generate_brief_column_description(self, request):
        with self._lock:
            self.column_requests.append(request)
        if request.column_name in self.fail_columns:
            raise ReasoningServiceError(f"stub failure for {request.column_name}", operation="generate_brief_column_description")
        return ColumnDescription(
            description=f"{request.column_name} of {request.table_name}",
            example_value=request.sample_values[0] if request.sample_values else "n/a",
            value_type=categorize_data_type(request.data_type),
            usage=dict(STUB_USAGE),
        )

    def analyze_table(self, request):
        with self._lock:
            self.table_requests.append(request)
        if self.fail_table:
            raise ReasoningServiceError("Read timeout on endpoint URL", operation="analyze_table")
        field_names = ", ".join(f.name for f in request.fields)
        return TableAnalysis(
            content=(
                f"1. **Business Purpose**: {request.table_name} holds {field_names}.\n"
                f"2. **Data Quality**:\n"
                f"- Add a NOT NULL constraint where values are always present\n"
                f"3. **Usage Recommendations**: Join on the key columns\n"
            ),
            usage=dict(STUB_USAGE),
        )

    def generate_structured_relationships(self, tables):
        with self._lock:
            self.relationship_requests.append(tables)
        return RelationshipAnalysis(
            relationships=list(self.relationships),
            analysis=self.analysis,
            usage=dict(STUB_USAGE),
        )


ORDERS_COLUMNS = [
    ("id", "integer", False, True),
    ("customer_id", "integer", False, False),
    ("total", "numeric", True, False),
]
ORDERS_ROWS = [
    {"id": 1, "customer_id": 10, "total": "19.99"},
    {"id": 2, "customer_id": 11, "total": "5.00"},
    {"id": 3, "customer_id": 10, "total": None},
]
CUSTOMERS_COLUMNS = [
    ("id", "integer", False, True),
    ("email", "character varying", True, False),
]
CUSTOMERS_ROWS = [
    {"id": 10, "email": "ada@example.com"},
    {"id": 11, "email": "grace@example.com"},
]


@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics_collector().reset()
    yield


@pytest.fixture
def fake_db():
    database = FakeDatabase()
    database.add_table("orders", ORDERS_COLUMNS, ORDERS_ROWS,
                       foreign_keys={"customer_id": ("customers", "id")})
    database.add_table("customers", CUSTOMERS_COLUMNS, CUSTOMERS_ROWS)
    return database


@pytest.fixture
def adapter_factory(fake_db):
    def factory(resolved):
        return ScriptedPostgresAdapter(resolved.config, resolved.credentials, database=fake_db)
    return factory


@pytest.fixture
def pg_adapter(fake_db):
    """Scripted PostgreSQL adapter for direct adapter / sampler tests"""
    config = ConnectionConfig(engine="postgres", host="db.internal", database="shop")
    credentials = DatabaseCredentials(username="analyst", password="s3cret")
    return ScriptedPostgresAdapter(config, credentials, large_table_threshold=100, database=fake_db)


@pytest.fixture
def secrets():
    manager = SecretManager(StaticSecretProvider({
        "shop/prod": {"username": "analyst", "password": "s3cret"},
    }))
    manager.init()
    yield manager
    manager.shutdown()


@pytest.fixture
def store():
    return InMemoryMetadataStore()


@pytest.fixture
def resolver(secrets):
    return ConnectionResolver(secrets)


@pytest.fixture
def analysis_config():
    return AnalysisConfig(max_column_workers=4)


@pytest.fixture
def catalog(store, resolver, analysis_config, adapter_factory):
    return CatalogService(store, resolver, analysis_config, adapter_factory)


@pytest.fixture
def reasoning():
    return StubReasoningService()


@pytest.fixture
def orchestrator(store, resolver, reasoning, analysis_config, adapter_factory):
    return AnalysisOrchestrator(store, resolver, reasoning, analysis_config, adapter_factory)


@pytest.fixture
def inferrer(store, reasoning):
    return RelationshipInferrer(store, reasoning)


@pytest.fixture
def environment(catalog):
    data_source = catalog.register_data_source(
        "shop", "postgres", {"host": "db.internal", "database": "shop"}, "shop/prod",
    )
    return catalog.add_environment(data_source.id, "production")


@pytest.fixture
def imported(catalog, environment):
    """orders and customers imported into the environment, keyed by name"""
    tables = catalog.import_tables(environment.id, [("public", "orders"), ("public", "customers")])
    return {t.name: t for t in tables}
