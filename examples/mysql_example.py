#!/usr/bin/env python3
"""
MySQL Example for schemalens

This example demonstrates:
1. Keeping catalog state in a SQLite metadata store
2. Resolving MySQL credentials from environment variables
3. Per-environment connection overrides (staging vs production)
4. Recovering analyses left in ANALYZING by an interrupted process
"""
import json
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from schemalens import (
    AnalysisOrchestrator,
    CatalogService,
    ConnectionResolver,
    EnvironmentSecretProvider,
    LLMReasoningService,
    SecretManager,
    SqliteMetadataStore,
    SystemConfig,
    get_llm_client,
    setup_logging,
)


def main():
    setup_logging(level="INFO")

    print("=" * 60)
    print("schemalens - MySQL Example")
    print("=" * 60)

    config = SystemConfig.from_env()

    # SCHEMALENS_SECRET_WAREHOUSE_MYSQL='{"username": "...", "password": "..."}'
    if "SCHEMALENS_SECRET_WAREHOUSE_MYSQL" not in os.environ:
        os.environ["SCHEMALENS_SECRET_WAREHOUSE_MYSQL"] = json.dumps({
            "username": os.getenv("MYSQL_USER", "root"),
            "password": os.getenv("MYSQL_PASSWORD", ""),
        })

    secrets = SecretManager(EnvironmentSecretProvider())
    secrets.init()

    store = SqliteMetadataStore(os.getenv("SCHEMALENS_DB_PATH", "schemalens-example.db"))
    resolver = ConnectionResolver(secrets)
    catalog = CatalogService(store, resolver, config.analysis)

    print("\n1. Registering MySQL data source with two environments...")
    source = catalog.register_data_source(
        "warehouse",
        "mysql",
        {
            "host": os.getenv("MYSQL_HOST", "localhost"),
            "port": int(os.getenv("MYSQL_PORT", "3306")),
            "database": os.getenv("MYSQL_DATABASE", "testdb"),
        },
        "warehouse/mysql",
    )
    production = catalog.add_environment(source.id, "production")
    staging = catalog.add_environment(
        source.id,
        "staging",
        connection={"host": os.getenv("MYSQL_STAGING_HOST", "localhost"), "sslMode": "prefer"},
    )

    for env in (production, staging):
        result = catalog.test_environment(env.id)
        status = "ok" if result.success else f"failed: {result.error}"
        print(f"   {env.name}: {status}")

    print("\n2. Recovering stale analyses from earlier runs...")
    orchestrator = AnalysisOrchestrator(
        store, resolver, LLMReasoningService(get_llm_client(config.llm)), config.analysis,
    )
    recovered = orchestrator.recover_stale_analyses()
    print(f"   Marked {len(recovered)} stuck tables as FAILED")

    print("\n3. Importing and analyzing the first production table...")
    available = [t for t in catalog.list_available_tables(production.id) if not t.is_permission_error]
    if not available:
        print("   No importable tables")
    else:
        imported = catalog.import_tables(production.id, [(available[0].schema, available[0].name)])
        for table in imported:
            analyzed = orchestrator.analyze_table(table.id)
            print(json.dumps(catalog.table_detail(analyzed.id), indent=2, default=str))

    secrets.shutdown()
    store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
