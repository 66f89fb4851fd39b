"""
Unit Tests for the Command Line Interface
"""
import json
import pytest
from unittest.mock import patch
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from schemalens.cli import Services, create_parser, load_config, main, parse_table_ref
from schemalens.config import LogLevel
from schemalens.utils import ConfigurationError


@pytest.fixture
def services(store, secrets, catalog, orchestrator, inferrer):
    return Services(
        store=store,
        secrets=secrets,
        catalog=catalog,
        orchestrator=orchestrator,
        relationships=inferrer,
    )


def run_cli(services, argv, capsys):
    with patch("schemalens.cli.build_services", return_value=services):
        code = main(argv)
    captured = capsys.readouterr()
    return code, captured.out, captured.err


class TestParser:
    @pytest.mark.parametrize("value,expected", [
        ("public.orders", ("public", "orders")),
        ("orders", (None, "orders")),
        ("project.dataset.events", ("project.dataset", "events")),
    ])
    def test_parse_table_ref(self, value, expected):
        assert parse_table_ref(value) == expected

    def test_import_arguments(self):
        args = create_parser().parse_args(["import", "env-1", "public.orders", "customers"])
        assert args.tables == [("public", "orders"), (None, "customers")]

    def test_register_connection_json(self):
        args = create_parser().parse_args([
            "register", "--name", "shop", "--engine", "postgres",
            "--connection", '{"host": "db", "port": 5433}',
        ])
        assert args.connection == {"host": "db", "port": 5433}
        assert args.environment == "default"

    def test_register_rejects_non_object(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["register", "--name", "x", "--engine", "pg", "--connection", "[1]"])

    def test_connection_file(self, tmp_path):
        path = tmp_path / "conn.yaml"
        path.write_text("host: db.internal\ndatabase: shop\n")
        args = create_parser().parse_args([
            "register", "--name", "shop", "--engine", "postgres", "--connection-file", str(path),
        ])
        assert args.connection_file == {"host": "db.internal", "database": "shop"}


class TestLoadConfig:
    def test_overrides(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        args = create_parser().parse_args(["--db", "meta.db", "--log-level", "DEBUG", "--json-logs", "recover"])
        config = load_config(args)
        assert config.store.sqlite_path == "meta.db"
        assert config.log_level == LogLevel.DEBUG
        assert config.json_logs

    def test_yaml(self, tmp_path):
        path = tmp_path / "schemalens.yaml"
        path.write_text("store:\n  sqlite_path: from-yaml.db\n")
        config = load_config(create_parser().parse_args(["--config", str(path), "recover"]))
        assert config.store.sqlite_path == "from-yaml.db"

    def test_missing_yaml_exits(self, capsys):
        assert main(["--config", "/nonexistent/schemalens.yaml", "recover"]) == 2
        assert "error:" in capsys.readouterr().err


class TestMain:
    """Tests for command dispatch with in-memory services"""

    def test_register(self, services, store, capsys):
        code, out, _ = run_cli(services, [
            "register", "--name", "shop", "--engine", "postgresql",
            "--connection", '{"host": "db.internal", "database": "shop"}',
            "--credentials-key", "shop/prod", "--custom-prompt", "Retail",
        ], capsys)
        assert code == 0
        output = json.loads(out)
        assert output["data_source"]["engine"] == "postgres"
        assert output["environment"]["name"] == "default"
        assert store.get_environment(output["environment"]["id"]).custom_prompt == "Retail"

    def test_import(self, services, environment, store, capsys):
        code, out, _ = run_cli(services, ["import", environment.id, "public.orders"], capsys)
        assert code == 0
        assert [t["name"] for t in json.loads(out)] == ["orders"]
        assert len(store.list_tables(environment.id)) == 1

    def test_analyze(self, services, imported, capsys):
        code, out, _ = run_cli(services, ["analyze", imported["orders"].id], capsys)
        assert code == 0
        assert json.loads(out)["analysis_status"] == "COMPLETED"

    def test_analyze_several(self, services, imported, capsys):
        code, out, _ = run_cli(services, ["analyze"] + [t.id for t in imported.values()], capsys)
        assert code == 0
        assert {t["name"] for t in json.loads(out)} == {"orders", "customers"}

    def test_error_is_reported(self, services, capsys):
        code, out, err = run_cli(services, ["show", "missing"], capsys)
        assert code == 1
        assert json.loads(out)["error_type"] == "RecordNotFoundError"
        assert "show failed" in err

    def test_service_setup_error_is_reported(self, capsys):
        setup_error = ConfigurationError("Unsupported vault provider: hsm", config_key="vault.provider")
        with patch("schemalens.cli.build_services", side_effect=setup_error):
            code = main(["recover"])
        out = capsys.readouterr().out
        assert code == 1
        assert json.loads(out)["error_type"] == "ConfigurationError"

    def test_services_closed(self, services, capsys):
        run_cli(services, ["recover"], capsys)
        assert not services.secrets.has_provider()
