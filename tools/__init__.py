# ============================================================================
# TOOLS MODULE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Tool - Operator command line utilities
# PURPOSE: CLI access to a running orchestrator
# CREATED: 17 OCT 2026
# ============================================================================
"""Operator tools. See tools/pipectl.py."""
