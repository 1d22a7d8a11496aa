"""Shared enums for the shortlink service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "PipelineState", "DropReason", "AdmissionDecision"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class PipelineState(StrEnum):
    """Lifecycle of the click worker pool."""

    STOPPED = "stopped"
    RUNNING = "running"


class DropReason(StrEnum):
    """Why a click event never reached the click store (metric label)."""

    QUEUE_FULL = "queue_full"
    LINK_NOT_FOUND = "link_not_found"
    PERSISTENCE_FAILED = "persistence_failed"


class AdmissionDecision(StrEnum):
    """Rate limiter outcome (metric label)."""

    ALLOWED = "allowed"
    REJECTED = "rejected"
