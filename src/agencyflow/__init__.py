"""Agencyflow - Workflow orchestration for a specialist-agent design agency.

This package drives client projects through a fixed lifecycle
(intake through completion) by delegating work to LLM-backed specialist
agents, tracking tasks and artifacts in a SQL store, and recording every
state change in an append-only event log.
"""

__version__ = "0.1.0"
