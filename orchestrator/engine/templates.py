# ============================================================================
# TEMPLATE RESOLUTION ENGINE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core - Template resolution with Jinja2
# PURPOSE: Resolve {{ }} expressions in stage argv/env and trigger bindings
# CREATED: 13 OCT 2026
# ============================================================================
"""
Template Resolution Engine

Resolves template expressions in task definitions and trigger rules.

Supported patterns:
- {{ params.name }} - Bound instance parameters
- {{ tasks.<task>.address }} - Logical address of a task in the same DAG
- {{ tasks.<task>.port }} - First exposed port of that task
- {{ instance.id }} / {{ instance.dag_id }} - The instance being launched
- {{ payload.field }} / {{ event.source }} - Trigger bindings only
- {{ env.VAR_NAME }} - Orchestrator environment variable STAGE_VAR_NAME

Examples:
    env:
      STREAMING_SOURCE_IP: "{{ tasks['market-streamer'].address }}"
      STREAMING_SOURCE_PORT: "{{ tasks['market-streamer'].port }}"
      SYMBOL: "{{ params.symbol }}"
"""

import ast
import os
import re
import logging
from typing import Any, Dict, Optional
from jinja2 import Environment, BaseLoader, TemplateSyntaxError, UndefinedError, StrictUndefined

logger = logging.getLogger(__name__)


class TemplateResolver:
    """
    Jinja2-based template resolver.

    Thread-safe, can be reused across multiple resolutions.
    """

    def __init__(self):
        """Initialize the template resolver with Jinja2 environment."""
        self._env = Environment(
            loader=BaseLoader(),
            autoescape=False,
            # Keep undefined as undefined for error detection
            undefined=StrictUndefined,
        )
        self._template_pattern = re.compile(r'\{\{.*?\}\}')

    def resolve(
        self,
        value: Any,
        context: "TemplateContext",
    ) -> Any:
        """
        Resolve all template expressions in a value, keeping native types.

        A string that is a single {{ expression }} may resolve to a number,
        list or dict. Used for trigger parameter bindings.

        Raises:
            TemplateResolutionError: If template cannot be resolved
        """
        return self._resolve_value(value, context.to_dict(), parse=True)

    def render_text(
        self,
        value: Any,
        context: "TemplateContext",
    ) -> Any:
        """
        Resolve templates, always producing strings for string inputs.

        Used for argv and environment bindings, which are strings on the wire.
        """
        return self._resolve_value(value, context.to_dict(), parse=False)

    def _resolve_value(
        self,
        value: Any,
        context: Dict[str, Any],
        parse: bool,
    ) -> Any:
        """Recursively resolve template expressions in a value."""
        if isinstance(value, str):
            return self._resolve_string(value, context, parse)
        elif isinstance(value, dict):
            return {k: self._resolve_value(v, context, parse) for k, v in value.items()}
        elif isinstance(value, list):
            return [self._resolve_value(item, context, parse) for item in value]
        else:
            return value

    def _resolve_string(self, value: str, context: Dict[str, Any], parse: bool) -> Any:
        """Resolve template expressions in a string value."""
        if '{{' not in value and '{%' not in value:
            return value

        try:
            rendered = self._env.from_string(value).render(context)
        except (TemplateSyntaxError, UndefinedError) as e:
            raise TemplateResolutionError(f"Failed to resolve '{value}': {e}")
        except Exception as e:
            # Expression errors on bound values, e.g. a string param used in arithmetic
            raise TemplateResolutionError(f"Failed to resolve '{value}': {type(e).__name__}: {e}")

        if not parse:
            return rendered

        # Only a lone expression may change type
        stripped = value.strip()
        if stripped.startswith('{{') and stripped.endswith('}}'):
            inner = stripped[2:-2].strip()
            if '{{' not in inner and '}}' not in inner:
                return self._maybe_parse_result(rendered)
        return rendered

    def _maybe_parse_result(self, result: str) -> Any:
        """Try to parse result as Python literal (for lists, dicts, numbers)."""
        result = result.strip()
        if not result:
            return result

        if (result.startswith('[') and result.endswith(']')) or \
           (result.startswith('{') and result.endswith('}')):
            try:
                return ast.literal_eval(result)
            except (ValueError, SyntaxError):
                pass

        if result in ("True", "False"):
            return result == "True"

        try:
            if '.' in result:
                return float(result)
            return int(result)
        except ValueError:
            pass

        return result

    def has_templates(self, value: Any) -> bool:
        """Check if a value contains any template expressions."""
        if isinstance(value, str):
            return bool(self._template_pattern.search(value))
        elif isinstance(value, dict):
            return any(self.has_templates(v) for v in value.values())
        elif isinstance(value, list):
            return any(self.has_templates(item) for item in value)
        return False


class TemplateContext:
    """
    Context for template resolution.

    Provides access to:
    - params: Bound instance parameters
    - tasks: Addresses and ports of every task in the DAG
    - instance: id and dag_id of the instance being launched
    - payload / event: The triggering event (bindings only)
    - env: Environment variables
    """

    def __init__(
        self,
        params: Optional[Dict[str, Any]] = None,
        tasks: Optional[Dict[str, "TaskContext"]] = None,
        instance: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
        event: Optional[Dict[str, Any]] = None,
        env_prefix: str = "STAGE_",
    ):
        self.params = params or {}
        self.tasks = tasks or {}
        self.instance = instance or {}
        self.payload = payload
        self.event = event
        self.env_prefix = env_prefix

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for Jinja2 rendering."""
        result = {
            "params": self.params,
            "tasks": {name: ctx.to_dict() for name, ctx in self.tasks.items()},
            "instance": self.instance,
            "env": _EnvAccessor(self.env_prefix),
        }
        if self.payload is not None:
            result["payload"] = self.payload
        if self.event is not None:
            result["event"] = self.event
        return result

    @classmethod
    def for_event(
        cls,
        payload: Dict[str, Any],
        event: Dict[str, Any],
    ) -> "TemplateContext":
        """Context for evaluating trigger bindings."""
        return cls(payload=payload, event=event)


class TaskContext:
    """
    Addressing information for one task.

    address is the logical name; host is what the substrate says a peer
    should dial (the same name on a cluster, 127.0.0.1 locally).
    """

    def __init__(
        self,
        address: str,
        ports: Optional[Dict[str, int]] = None,
        host: Optional[str] = None,
    ):
        self.address = address
        self.ports = ports or {}
        self.host = host or address

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for Jinja2 rendering."""
        first = next(iter(self.ports.values()), None)
        return {
            "address": self.address,
            "host": self.host,
            "port": first,
            "ports": self.ports,
        }


class _EnvAccessor:
    """Accessor for prefixed environment variables; unprefixed names are not visible."""

    def __init__(self, prefix: str = ""):
        self._prefix = prefix

    def __getattr__(self, name: str) -> str:
        """Get {prefix}{name} from the environment."""
        value = os.environ.get(f"{self._prefix}{name}")
        if value is not None:
            return value
        raise AttributeError(f"Environment variable not found: {self._prefix}{name}")


class TemplateResolutionError(Exception):
    """Raised when template resolution fails."""
    pass


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

_resolver: Optional[TemplateResolver] = None


def get_resolver() -> TemplateResolver:
    """Get shared template resolver instance."""
    global _resolver
    if _resolver is None:
        _resolver = TemplateResolver()
    return _resolver


def resolve_bindings(
    bindings: Dict[str, str],
    payload: Dict[str, Any],
    event: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Evaluate trigger rule bindings against an event.

    Args:
        bindings: param name -> template over payload/event
        payload: Event payload (unmodified inbound body)
        event: Envelope fields (event_id, source, name, received_at)

    Returns:
        Bound parameters
    """
    context = TemplateContext.for_event(payload=payload, event=event)
    return get_resolver().resolve(bindings, context)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "TemplateResolver",
    "TemplateContext",
    "TaskContext",
    "TemplateResolutionError",
    "get_resolver",
    "resolve_bindings",
]
