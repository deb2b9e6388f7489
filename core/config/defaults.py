# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for probing, scheduling, monitoring, triggers
# CREATED: 12 OCT 2026
# ============================================================================
"""
Configuration Defaults

Provides sensible defaults for the orchestrator's background behaviour.
These can be overridden via environment variables or per-task in DAG YAML.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Type-safe access
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from core.contracts import DependencyGate


def _optional_int(name: str, default: Optional[int]) -> Optional[int]:
    """Read an int env var where 0 or empty means 'no limit'."""
    raw = os.getenv(name)
    if raw is None:
        return default
    value = int(raw) if raw.strip() else 0
    return value if value > 0 else None


def _optional_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = float(raw) if raw.strip() else 0.0
    return value if value > 0 else None


@dataclass(frozen=True)
class ProbeDefaults:
    """
    Defaults for readiness probes.

    Matches the init gate the stages were deployed with:
    poll every 3s, then wait 5s once the name resolves.
    """
    interval_seconds: float = 3.0
    max_attempts: Optional[int] = 20   # None = poll until cancelled
    grace_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> "ProbeDefaults":
        """Create from environment variables."""
        return cls(
            interval_seconds=float(os.getenv("PROBE_INTERVAL_SEC", 3.0)),
            max_attempts=_optional_int("PROBE_MAX_ATTEMPTS", 20),
            grace_seconds=float(os.getenv("PROBE_GRACE_SEC", 5.0)),
        )


@dataclass(frozen=True)
class SchedulerDefaults:
    """
    Defaults for the DAG scheduler.

    Controls dependency semantics, history depth and housekeeping.
    """
    dependency_gate: DependencyGate = DependencyGate.READY
    startup_window_seconds: float = 1.0
    max_transitions: int = 200            # per instance, oldest dropped first
    archive_retention_seconds: Optional[float] = None  # None = keep until reclaim
    housekeeping_interval_seconds: float = 30.0
    terminate_timeout_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> "SchedulerDefaults":
        """Create from environment variables."""
        return cls(
            dependency_gate=DependencyGate(
                os.getenv("SCHEDULER_DEPENDENCY_GATE", DependencyGate.READY.value).lower()
            ),
            startup_window_seconds=float(os.getenv("SCHEDULER_STARTUP_WINDOW_SEC", 1.0)),
            max_transitions=int(os.getenv("SCHEDULER_MAX_TRANSITIONS", 200)),
            archive_retention_seconds=_optional_float("SCHEDULER_ARCHIVE_RETENTION_SEC", None),
            housekeeping_interval_seconds=float(os.getenv("SCHEDULER_HOUSEKEEPING_SEC", 30.0)),
            terminate_timeout_seconds=float(os.getenv("SCHEDULER_TERMINATE_TIMEOUT_SEC", 5.0)),
        )


@dataclass(frozen=True)
class MonitorDefaults:
    """Defaults for the status monitor loop."""
    interval_seconds: float = 5.0
    recent_transitions: int = 8
    enabled: bool = False   # log snapshots from the app process

    @classmethod
    def from_env(cls) -> "MonitorDefaults":
        """Create from environment variables."""
        return cls(
            interval_seconds=float(os.getenv("MONITOR_INTERVAL_SEC", 5.0)),
            recent_transitions=int(os.getenv("MONITOR_RECENT_TRANSITIONS", 8)),
            enabled=os.getenv("MONITOR_ENABLED", "false").lower() == "true",
        )


@dataclass(frozen=True)
class TriggerDefaults:
    """Defaults for trigger routes and rules."""
    triggers_file: str = "./triggers/triggers.yaml"
    dags_dir: str = "./workflows"

    @classmethod
    def from_env(cls) -> "TriggerDefaults":
        """Create from environment variables."""
        return cls(
            triggers_file=os.getenv("TRIGGERS_FILE", "./triggers/triggers.yaml"),
            dags_dir=os.getenv("DAGS_DIR", "./workflows"),
        )


# ============================================================================
# GLOBAL DEFAULTS INSTANCE
# ============================================================================

@dataclass
class Defaults:
    """Container for all default configurations."""
    probe: ProbeDefaults = field(default_factory=ProbeDefaults)
    scheduler: SchedulerDefaults = field(default_factory=SchedulerDefaults)
    monitor: MonitorDefaults = field(default_factory=MonitorDefaults)
    triggers: TriggerDefaults = field(default_factory=TriggerDefaults)

    @classmethod
    def from_env(cls) -> "Defaults":
        """Create all defaults from environment variables."""
        return cls(
            probe=ProbeDefaults.from_env(),
            scheduler=SchedulerDefaults.from_env(),
            monitor=MonitorDefaults.from_env(),
            triggers=TriggerDefaults.from_env(),
        )


_defaults: Optional[Defaults] = None


def get_defaults() -> Defaults:
    """Get global defaults instance."""
    global _defaults
    if _defaults is None:
        _defaults = Defaults.from_env()
    return _defaults


def reset_defaults() -> None:
    """Reset defaults (for testing)."""
    global _defaults
    _defaults = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ProbeDefaults",
    "SchedulerDefaults",
    "MonitorDefaults",
    "TriggerDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
