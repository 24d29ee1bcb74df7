"""
layered-sandbox

File: src/layered_sandbox/__init__.py

Purpose
- Package root. Compiles a filesystem-visibility policy into an ordered
  bubblewrap mount sequence and runs a command inside it.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
