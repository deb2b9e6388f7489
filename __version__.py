# ============================================================================
# VERSION - STAGE ORCHESTRATOR
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# ============================================================================
"""
Version information for the Stage Orchestrator.

This is the single source of truth for the application version.
Updated manually for each release.
"""
# Version format: major.minor.patch
# Criteria for 0.2 - Service Bus backend exercised end to end
__version__ = "0.1.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Build metadata
BUILD_DATE = "2026-10-18"

EPOCH = 1
CODENAME = "Stage Orchestrator"
