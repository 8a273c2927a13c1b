"""
Triage Interfaces Layer
========================

Interface adapters (controllers) for the conversational triage module.

Contains:
- Controllers: FastAPI route handlers and runtime wiring
"""

from src.triage.interfaces.controllers import configure_triage, triage_router

__all__ = ["configure_triage", "triage_router"]
