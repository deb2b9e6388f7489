# ============================================================================
# DEFINITION SERVICE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core - DAG definition management
# PURPOSE: Load, validate and cache DAG definitions
# CREATED: 16 OCT 2026
# ============================================================================
"""
Definition Service

Loads DAG definitions from YAML files and provides lookup capabilities.
Every definition is fully validated (schema, structure, graph) on load;
files that fail are skipped and their errors kept for the health check.

DAG files are stored in the workflows/ directory (DAGS_DIR).
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from core.config import get_defaults
from core.errors import MalformedDefinitionError, ValidationError
from core.models import DagDefinition
from orchestrator.engine.graph import get_validator

logger = logging.getLogger(__name__)


def _format_pydantic_errors(error: PydanticValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        messages.append(f"{location}: {item.get('msg')}" if location else item.get("msg", ""))
    return messages


def parse_definition(data: Any, source: str = "<inline>") -> DagDefinition:
    """
    Build and validate a DagDefinition from parsed YAML/JSON data.

    Raises:
        ValidationError: schema, structure or graph problems
    """
    if not isinstance(data, dict):
        raise MalformedDefinitionError(f"{source}: DAG document must be a mapping")

    try:
        definition = DagDefinition.model_validate(data)
    except PydanticValidationError as e:
        errors = _format_pydantic_errors(e)
        raise MalformedDefinitionError(f"{source}: {'; '.join(errors)}", errors=errors)

    get_validator().validate(definition)
    return definition


def parse_definition_yaml(text: str, source: str = "<inline>") -> DagDefinition:
    """Parse a YAML document into a validated DagDefinition."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise MalformedDefinitionError(f"{source}: invalid YAML: {e}")
    return parse_definition(data, source)


class DefinitionService:
    """Service for loading and managing DAG definitions."""

    def __init__(self, dags_dir: Optional[str] = None):
        """
        Initialize definition service.

        Args:
            dags_dir: Directory containing DAG YAML files.
                      Defaults to DAGS_DIR (./workflows)
        """
        self.dags_dir = Path(dags_dir or get_defaults().triggers.dags_dir)

        self._cache: Dict[str, DagDefinition] = {}
        self._loaded = False
        self.load_errors: Dict[str, str] = {}

    def load_all(self) -> int:
        """
        Load all DAG definitions from the directory.

        Returns:
            Number of definitions loaded
        """
        self._loaded = True
        if not self.dags_dir.exists():
            logger.warning(f"DAG directory not found: {self.dags_dir}")
            return 0

        count = 0
        paths = sorted(list(self.dags_dir.glob("*.yaml")) + list(self.dags_dir.glob("*.yml")))
        for path in paths:
            try:
                definition = self._load_yaml(path)
            except (ValidationError, OSError) as e:
                self.load_errors[path.name] = str(e)
                logger.error(f"Failed to load {path}: {e}")
                continue

            if definition.dag_id in self._cache:
                message = f"Duplicate dag_id '{definition.dag_id}' (already loaded)"
                self.load_errors[path.name] = message
                logger.error(f"Skipping {path}: {message}")
                continue

            self._cache[definition.dag_id] = definition
            count += 1
            logger.info(f"Loaded DAG: {definition.dag_id} v{definition.version} ({len(definition.tasks)} tasks)")

        logger.info(f"Loaded {count} DAGs from {self.dags_dir}")
        return count

    def get(self, dag_id: str) -> Optional[DagDefinition]:
        """Get a DAG definition by ID, or None."""
        if not self._loaded:
            self.load_all()
        return self._cache.get(dag_id)

    def get_or_raise(self, dag_id: str) -> DagDefinition:
        """
        Get a DAG definition, raising if not found.

        Raises:
            KeyError if DAG not found
        """
        definition = self.get(dag_id)
        if definition is None:
            raise KeyError(f"DAG not found: {dag_id}")
        return definition

    def list_all(self) -> List[DagDefinition]:
        """List all loaded DAGs."""
        if not self._loaded:
            self.load_all()
        return list(self._cache.values())

    def register(self, definition: DagDefinition) -> None:
        """
        Register a DAG definition (for testing or programmatic use).

        Raises:
            ValidationError: definition is invalid
        """
        get_validator().validate(definition)
        self._cache[definition.dag_id] = definition
        logger.info(f"Registered DAG: {definition.dag_id}")

    def _load_yaml(self, path: Path) -> DagDefinition:
        with open(path) as f:
            text = f.read()
        return parse_definition_yaml(text, source=path.name)

    def reload(self) -> int:
        """
        Reload all DAGs from disk.

        Returns:
            Number of DAGs loaded
        """
        self._cache.clear()
        self.load_errors.clear()
        self._loaded = False
        return self.load_all()


__all__ = [
    "DefinitionService",
    "parse_definition",
    "parse_definition_yaml",
]
