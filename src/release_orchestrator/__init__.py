"""
release-orchestrator — package root

File: src/release_orchestrator/__init__.py

Purpose
- Stage-sequencing and verification engine for the release pipeline of a
  containerized web service: gated stages, bounded commands, health polling,
  scoped credentials, and guaranteed cleanup + notification.

Import boundary
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
