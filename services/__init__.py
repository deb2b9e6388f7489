# ============================================================================
# SERVICES MODULE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core - Application service layer
# PURPOSE: Definitions, trigger intake, rule matching and status views
# CREATED: 16 OCT 2026
# ============================================================================
"""
Services Module

Everything between the HTTP surface and the scheduler.

Usage:
    from services import DefinitionService, RuleMatcher, TriggerConsumer

    definitions = DefinitionService()
    definitions.load_all()
    matcher = RuleMatcher(config.rules, definitions, scheduler)
    consumer = TriggerConsumer(bus, matcher)
    await consumer.start()
"""

from .definition_service import DefinitionService, parse_definition, parse_definition_yaml
from .trigger_config import TriggerConfig, load_trigger_config, parse_trigger_config
from .trigger_listener import TriggerListener, TriggerShapeError
from .rule_matcher import RuleMatcher, TriggerConsumer, UnprocessableEventError
from .status_monitor import StatusMonitor, render_snapshot

__all__ = [
    "DefinitionService",
    "parse_definition",
    "parse_definition_yaml",
    "TriggerConfig",
    "load_trigger_config",
    "parse_trigger_config",
    "TriggerListener",
    "TriggerShapeError",
    "RuleMatcher",
    "TriggerConsumer",
    "UnprocessableEventError",
    "StatusMonitor",
    "render_snapshot",
]
