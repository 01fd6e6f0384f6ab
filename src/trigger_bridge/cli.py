"""Module entrypoint: ``python -m trigger_bridge.cli``.

The CLI itself lives in `trigger_bridge.orchestrator.main`.
"""

from __future__ import annotations

from trigger_bridge.orchestrator.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
