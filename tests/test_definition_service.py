# ============================================================================
# DEFINITION SERVICE TESTS
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Tests - DAG definition loading
# PURPOSE: Verify YAML loading, load errors, registration and shipped configs
# CREATED: 18 OCT 2026
# ============================================================================
"""
Definition Service Tests

Run with:
    pytest tests/test_definition_service.py -v
"""

from pathlib import Path

import pytest

from core.errors import CyclicGraphError, MalformedDefinitionError
from services import (
    DefinitionService,
    load_trigger_config,
    parse_definition,
    parse_definition_yaml,
)

REPO_ROOT = Path(__file__).resolve().parent.parent


# ============================================================================
# FIXTURES
# ============================================================================

GOOD = """
dag_id: good
params:
  symbol: BTC-USD
tasks:
  - name: streamer
    command: [python3, streamer.py]
    ports:
      - port: 8888
  - name: algo
    depends_on: streamer
    command: [python3, algo.py]
"""

CYCLIC = """
dag_id: cyclic
tasks:
  - name: a
    depends_on: b
    command: [a]
  - name: b
    depends_on: a
    command: [b]
"""

DUPLICATE = """
dag_id: good
tasks:
  - name: other
    command: [other]
"""


@pytest.fixture
def dags_dir(tmp_path):
    (tmp_path / "a_good.yaml").write_text(GOOD)
    (tmp_path / "b_cyclic.yaml").write_text(CYCLIC)
    (tmp_path / "c_duplicate.yml").write_text(DUPLICATE)
    (tmp_path / "d_broken.yaml").write_text("dag_id: [unterminated\n")
    (tmp_path / "notes.txt").write_text("ignored")
    return tmp_path


# ============================================================================
# LOADING
# ============================================================================

class TestDefinitionService:

    def test_load_all_keeps_good_definitions(self, dags_dir):
        service = DefinitionService(str(dags_dir))
        assert service.load_all() == 1
        assert [d.dag_id for d in service.list_all()] == ["good"]

    def test_load_errors_recorded_per_file(self, dags_dir):
        service = DefinitionService(str(dags_dir))
        service.load_all()
        assert set(service.load_errors) == {"b_cyclic.yaml", "c_duplicate.yml", "d_broken.yaml"}
        assert "Cycle detected" in service.load_errors["b_cyclic.yaml"]
        assert "Duplicate dag_id" in service.load_errors["c_duplicate.yml"]
        assert "invalid YAML" in service.load_errors["d_broken.yaml"]

    def test_get_loads_lazily(self, dags_dir):
        service = DefinitionService(str(dags_dir))
        definition = service.get("good")
        assert definition.task_names == ["streamer", "algo"]
        assert service.get("missing") is None

    def test_get_or_raise(self, dags_dir):
        service = DefinitionService(str(dags_dir))
        with pytest.raises(KeyError, match="DAG not found: missing"):
            service.get_or_raise("missing")

    def test_missing_directory(self, tmp_path):
        service = DefinitionService(str(tmp_path / "nope"))
        assert service.load_all() == 0
        assert service.list_all() == []

    def test_register_validates(self, tmp_path, make_dag, task):
        service = DefinitionService(str(tmp_path))
        service.register(make_dag([task("a")], dag_id="programmatic"))
        assert service.get("programmatic") is not None

        with pytest.raises(CyclicGraphError):
            service.register(make_dag([task("a", ["b"]), task("b", ["a"])], dag_id="loop"))
        assert service.get("loop") is None

    def test_reload_picks_up_changes(self, dags_dir):
        service = DefinitionService(str(dags_dir))
        service.load_all()
        (dags_dir / "b_cyclic.yaml").unlink()
        (dags_dir / "e_new.yaml").write_text(GOOD.replace("dag_id: good", "dag_id: fresh"))

        assert service.reload() == 2
        assert "b_cyclic.yaml" not in service.load_errors
        assert service.get("fresh") is not None


# ============================================================================
# PARSING
# ============================================================================

class TestParseDefinition:

    def test_parse_yaml(self):
        definition = parse_definition_yaml(GOOD)
        assert definition.dag_id == "good"
        assert definition.get_task("algo").depends_on == ["streamer"]

    def test_non_mapping(self):
        with pytest.raises(MalformedDefinitionError, match="must be a mapping"):
            parse_definition(["not", "a", "dag"])

    def test_schema_errors_listed(self):
        with pytest.raises(MalformedDefinitionError) as exc_info:
            parse_definition({"dag_id": "x", "tasks": [{"name": "a"}]})
        assert exc_info.value.errors


# ============================================================================
# SHIPPED CONFIGURATION
# ============================================================================

class TestShippedConfig:

    def test_trading_pipeline_loads(self):
        service = DefinitionService(str(REPO_ROOT / "workflows"))
        assert service.load_all() == 1, service.load_errors
        definition = service.get("trading-system")
        assert definition.task_names == ["market-streamer", "order-book-algo", "trade-simulator"]
        assert definition.get_task("trade-simulator").depends_on == ["order-book-algo"]

    def test_triggers_reference_shipped_dag(self):
        config = load_trigger_config(str(REPO_ROOT / "triggers" / "triggers.yaml"))
        assert config.get_route("order-book").path == "/algo/order-book"
        assert [rule.dag_id for rule in config.rules] == ["trading-system"]
