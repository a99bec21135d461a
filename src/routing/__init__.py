"""
AI Routing Engine - Routing Module

Request routing with:
- Candidate resolution from provider-qualified models or logical routes
- Sequential failover with semantic drift protection
- Live, advisory provider health
"""

from .router import Router, RouterStats
from .fallback import (
    Candidate,
    CandidateResolver,
    FallbackPhase,
    RequestPhaseTracker,
    order_by_health,
    parse_target,
)
from .health import HealthMonitor

__all__ = [
    # Router
    "Router",
    "RouterStats",
    # Fallback
    "Candidate",
    "CandidateResolver",
    "FallbackPhase",
    "RequestPhaseTracker",
    "order_by_health",
    "parse_target",
    # Health
    "HealthMonitor",
]
