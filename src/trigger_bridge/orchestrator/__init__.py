"""Core bridge components.

Provides:
- Settings loaded from .env
- Structured logging
- The error hierarchy and retry classification
- Trigger routing (``triggers``) and durable step execution (``workflow``)
- A small CLI surface
"""
