"""FastAPI server adapter for the trigger bridge.

Design intent:
- Keep business logic in `trigger_bridge.orchestrator.*`
- Keep server-specific concerns (routing, status mapping, background advancement) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from trigger_bridge.server.app import create_app
