"""
Entry point for running tenant_broker as a module.

This file enables:
- `python -m tenant_broker`
- `uv run python -m tenant_broker`
"""

from __future__ import annotations

from tenant_broker import main

if __name__ == "__main__":
    main()
