#!/usr/bin/env python3
"""
Basic Usage Example for schemalens

This example demonstrates:
1. Registering a PostgreSQL data source with vaulted credentials
2. Importing tables and analyzing them with Bedrock Claude
3. Inferring relationships across the environment

Requires a reachable PostgreSQL database and AWS credentials with Bedrock access.
"""
import json
import os
import sys

# Add src to path for local development
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from schemalens import (
    AnalysisOrchestrator,
    CatalogService,
    ConnectionResolver,
    InMemoryMetadataStore,
    LLMConfig,
    LLMReasoningService,
    RelationshipInferrer,
    SchemaLensError,
    SecretManager,
    StaticSecretProvider,
    get_llm_client,
    get_metrics_collector,
    setup_logging,
)


def main():
    setup_logging(level="INFO")

    print("=" * 60)
    print("schemalens - Basic Usage Example")
    print("=" * 60)

    # Credentials live in the vault, never on the data source
    secrets = SecretManager(StaticSecretProvider({
        "shop/dev": {
            "username": os.getenv("PGUSER", "postgres"),
            "password": os.getenv("PGPASSWORD", ""),
        },
    }))
    secrets.init()

    store = InMemoryMetadataStore()
    resolver = ConnectionResolver(secrets)
    catalog = CatalogService(store, resolver)

    print("\n1. Registering data source...")
    source = catalog.register_data_source(
        "shop",
        "postgres",
        {
            "host": os.getenv("PGHOST", "localhost"),
            "port": int(os.getenv("PGPORT", "5432")),
            "database": os.getenv("PGDATABASE", "shop"),
        },
        "shop/dev",
    )
    env = catalog.add_environment(source.id, "development", custom_prompt="E-commerce order data")

    print("2. Testing connection...")
    health = catalog.test_environment(env.id)
    print(f"   {health.message} ({health.latency_ms:.0f} ms)")
    if not health.success:
        print(f"   Error: {health.error}")
        return 1

    print("3. Listing tables...")
    available = catalog.list_available_tables(env.id)
    for meta in available:
        print(f"   - {meta.qualified_name} (~{meta.row_count or 0} rows)")
    if available and available[0].is_permission_error:
        print(f"   {available[0].description}")
        return 1

    tables = catalog.import_tables(env.id, [(t.schema, t.name) for t in available[:5]])
    print(f"   Imported {len(tables)} tables")

    print("4. Analyzing tables...")
    reasoning = LLMReasoningService(get_llm_client(LLMConfig(aws_region=os.getenv("AWS_REGION", "us-east-1"))))
    orchestrator = AnalysisOrchestrator(store, resolver, reasoning)
    results = orchestrator.analyze_tables([t.id for t in tables])
    for table in results.values():
        print(f"\n   {table.qualified_name}: {table.analysis_status.value}")
        for column in store.list_columns(table.id):
            if column.ai_description:
                print(f"     {column.name}: {column.ai_description.purpose}")

    print("\n5. Inferring relationships...")
    try:
        inference = RelationshipInferrer(store, reasoning).infer(env.id)
        print(f"   {inference.analysis}")
        print(f"   Created {inference.created_count}, skipped {inference.skipped}")
    except SchemaLensError as e:
        print(f"   Skipped: {e.message}")

    print("\nMetrics:")
    print(json.dumps(get_metrics_collector().get_metrics()["counters"], indent=2))

    secrets.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
