"""
Shared Kernel Module
====================

This module contains shared infrastructure and API elements used across
the application.

Architecture Pattern: Modular Monolith
- The triage module is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add triage business logic to shared kernel.
"""

__version__ = "1.0.0"
