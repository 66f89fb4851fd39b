"""
schemalens command line

Usage:
    schemalens register --name shop --engine postgres \\
        --connection '{"host": "db", "database": "shop"}' --credentials-key shop/prod
    schemalens list-tables <environment-id>
    schemalens import <environment-id> public.orders public.customers
    schemalens analyze <table-id> [<table-id> ...]
    schemalens relationships <environment-id>
    schemalens show <table-id>
"""
from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

import yaml
from pydantic import ValidationError

from .config import LogLevel, SystemConfig, set_config
from .connection import ConnectionResolver
from .llm_client import LLMReasoningService, get_llm_client
from .pipeline import AnalysisOrchestrator, CatalogService, RelationshipInferrer
from .store import MetadataStore, create_store
from .utils import SchemaLensError, get_logger, set_correlation_id, setup_logging
from .vault import SecretManager, create_secret_provider

logger = get_logger(__name__)


@dataclass
class Services:
    """Collaborators wired for one CLI invocation"""
    store: MetadataStore
    secrets: SecretManager
    catalog: CatalogService
    orchestrator: AnalysisOrchestrator
    relationships: RelationshipInferrer

    def close(self) -> None:
        self.secrets.shutdown()
        self.store.close()


def build_services(config: SystemConfig) -> Services:
    store = create_store(config.store)
    secrets = SecretManager(create_secret_provider(config.vault))
    secrets.init()

    resolver = ConnectionResolver(secrets)
    reasoning = LLMReasoningService(get_llm_client(config.llm))
    return Services(
        store=store,
        secrets=secrets,
        catalog=CatalogService(store, resolver, config.analysis),
        orchestrator=AnalysisOrchestrator(store, resolver, reasoning, config.analysis),
        relationships=RelationshipInferrer(store, reasoning),
    )


def _json_arg(value: str) -> Dict[str, Any]:
    try:
        data = json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"invalid JSON: {e}")
    if not isinstance(data, dict):
        raise argparse.ArgumentTypeError("expected a JSON object")
    return data


def _yaml_file_arg(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as e:
        raise argparse.ArgumentTypeError(f"could not read {path}: {e}")
    if not isinstance(data, dict):
        raise argparse.ArgumentTypeError(f"{path} must contain a mapping")
    return data


def parse_table_ref(value: str) -> Tuple[Optional[str], str]:
    """'schema.table' -> (schema, table); a bare name has no schema"""
    schema, _, table = value.rpartition(".")
    return (schema or None), table


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="schemalens",
        description="Schema intelligence: introspect, sample and describe database tables",
    )
    parser.add_argument("--config", metavar="PATH", help="YAML configuration file")
    parser.add_argument("--db", metavar="PATH", help="Metadata store (SQLite file)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override the configured log level",
    )
    parser.add_argument("--json-logs", action="store_true", help="Structured JSON logs")

    commands = parser.add_subparsers(dest="command", required=True)

    register = commands.add_parser("register", help="Register a data source with one environment")
    register.add_argument("--name", required=True)
    register.add_argument("--engine", required=True, help="postgres, mysql, mssql, bigquery, databricks, db2")
    source = register.add_mutually_exclusive_group()
    source.add_argument("--connection", type=_json_arg, default={}, help="Connection parameters as JSON")
    source.add_argument("--connection-file", type=_yaml_file_arg, help="Connection parameters as YAML")
    register.add_argument("--credentials-key", help="Vault key holding the credentials")
    register.add_argument("--environment", default="default", help="Environment name (default: default)")
    register.add_argument("--env-connection", type=_json_arg, default={}, help="Environment overrides as JSON")
    register.add_argument("--custom-prompt", help="Extra context passed with every column description request")

    test = commands.add_parser("test-connection", help="Check an environment's connection and record its health")
    test.add_argument("environment_id")

    listing = commands.add_parser("list-tables", help="List tables available for import")
    listing.add_argument("environment_id")

    imports = commands.add_parser("import", help="Import tables (schema.table) into an environment")
    imports.add_argument("environment_id")
    imports.add_argument("tables", nargs="+", type=parse_table_ref, metavar="TABLE")

    analyze = commands.add_parser("analyze", help="Run AI analysis for one or more tables")
    analyze.add_argument("table_ids", nargs="+", metavar="TABLE_ID")
    analyze.add_argument("--prompt", help="Custom prompt overriding the environment's")

    relationships = commands.add_parser("relationships", help="Infer relationships across an environment")
    relationships.add_argument("environment_id")

    commands.add_parser("recover", help="Fail analyses stuck in ANALYZING")

    show = commands.add_parser("show", help="Show a table with its columns and relationships")
    show.add_argument("table_id")

    return parser


def run_command(args: argparse.Namespace, services: Services) -> Any:
    """Execute one parsed command and return JSON-serializable output"""
    if args.command == "register":
        connection = args.connection_file or args.connection
        data_source = services.catalog.register_data_source(
            args.name, args.engine, connection, args.credentials_key,
        )
        environment = services.catalog.add_environment(
            data_source.id,
            args.environment,
            connection=args.env_connection,
            custom_prompt=args.custom_prompt,
        )
        return {"data_source": data_source.to_dict(), "environment": environment.to_dict()}

    if args.command == "test-connection":
        return services.catalog.test_environment(args.environment_id).to_dict()

    if args.command == "list-tables":
        return [t.to_dict() for t in services.catalog.list_available_tables(args.environment_id)]

    if args.command == "import":
        return [t.to_dict() for t in services.catalog.import_tables(args.environment_id, args.tables)]

    if args.command == "analyze":
        if len(args.table_ids) == 1:
            return services.orchestrator.analyze_table(args.table_ids[0], args.prompt).to_dict()
        results = services.orchestrator.analyze_tables(args.table_ids, args.prompt)
        return [t.to_dict() for t in results.values()]

    if args.command == "relationships":
        return services.relationships.infer(args.environment_id).to_dict()

    if args.command == "recover":
        return [t.to_dict() for t in services.orchestrator.recover_stale_analyses()]

    if args.command == "show":
        return services.catalog.table_detail(args.table_id)

    raise ValueError(f"Unknown command: {args.command}")


def load_config(args: argparse.Namespace) -> SystemConfig:
    config = SystemConfig.from_yaml(args.config) if args.config else SystemConfig.from_env()
    updates: Dict[str, Any] = {}
    if args.db:
        updates["store"] = config.store.model_copy(update={"sqlite_path": args.db})
    if args.log_level:
        updates["log_level"] = LogLevel(args.log_level)
    if args.json_logs:
        updates["json_logs"] = True
    return config.model_copy(update=updates) if updates else config


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args)
    except SchemaLensError as e:
        print(f"error: {e.message}", file=sys.stderr)
        return 2
    except ValidationError as e:
        print(f"error: invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_logging(
        level=config.log_level.value,
        json_format=config.json_logs,
    )
    set_config(config)
    set_correlation_id()

    services = None
    try:
        services = build_services(config)
        output = run_command(args, services)
    except SchemaLensError as e:
        # logs go to stderr; stdout carries only the JSON document
        logger.error(f"{args.command} failed: {e.message}", extra={"extra_fields": {"error_type": type(e).__name__}})
        print(json.dumps(e.to_dict(), indent=2, default=str))
        return 1
    finally:
        if services is not None:
            services.close()

    print(json.dumps(output, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
