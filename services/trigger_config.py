# ============================================================================
# TRIGGER CONFIGURATION
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Service - Trigger routes and rules from YAML
# PURPOSE: Load the inbound route table and the event-to-DAG rule table
# CREATED: 16 OCT 2026
# ============================================================================
"""
Trigger Configuration

One YAML file (TRIGGERS_FILE) declares both tables:

    routes:
      - name: order-book
        path: /algo/order-book
        method: POST
        source: trading-event-source
        event_name: algo-order-book
        required_fields: [symbol]

    rules:
      - name: order-book-starts-trading
        source: trading-event-source
        event_name: algo-order-book
        dag_id: trading-system
        bindings:
          symbol: "{{ payload.symbol }}"

Both tables are loaded once at startup and never change afterwards.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from core.config import get_defaults
from core.errors import MalformedDefinitionError
from core.models import TriggerRoute, TriggerRule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TriggerConfig:
    """Parsed trigger routes and rules."""
    routes: List[TriggerRoute] = field(default_factory=list)
    rules: List[TriggerRule] = field(default_factory=list)

    def get_route(self, name: str) -> Optional[TriggerRoute]:
        for route in self.routes:
            if route.name == name:
                return route
        return None


def _unique(items: List[Any], attr: str, kind: str) -> None:
    seen = set()
    for item in items:
        value = getattr(item, attr)
        if value in seen:
            raise MalformedDefinitionError(f"Duplicate {kind} {attr}: {value}")
        seen.add(value)


def parse_trigger_config(data: Any, source: str = "<inline>") -> TriggerConfig:
    """
    Build a TriggerConfig from parsed YAML.

    Raises:
        MalformedDefinitionError: bad shape, invalid entries or duplicate names/paths
    """
    if data is None:
        return TriggerConfig()
    if not isinstance(data, dict):
        raise MalformedDefinitionError(f"{source}: trigger config must be a mapping")

    try:
        routes = [TriggerRoute.model_validate(item) for item in data.get("routes") or []]
        rules = [TriggerRule.model_validate(item) for item in data.get("rules") or []]
    except PydanticValidationError as e:
        raise MalformedDefinitionError(f"{source}: {e}")

    _unique(routes, "name", "route")
    _unique(routes, "path", "route")
    _unique(rules, "name", "rule")
    return TriggerConfig(routes=routes, rules=rules)


def load_trigger_config(path: Optional[str] = None) -> TriggerConfig:
    """
    Load the trigger config file.

    A missing file yields an empty config: the orchestrator still serves
    direct submissions.
    """
    config_path = Path(path or get_defaults().triggers.triggers_file)
    if not config_path.exists():
        logger.warning(f"Trigger config not found: {config_path} (no trigger routes)")
        return TriggerConfig()

    with open(config_path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise MalformedDefinitionError(f"{config_path.name}: invalid YAML: {e}")

    config = parse_trigger_config(data, source=config_path.name)
    logger.info(
        f"Loaded trigger config {config_path}: "
        f"{len(config.routes)} routes, {len(config.rules)} rules"
    )
    return config


__all__ = ["TriggerConfig", "parse_trigger_config", "load_trigger_config"]
