"""
AI Routing Engine - Fallback Chain

Candidate resolution and the "No Semantic Drift" rule:

RULE: Once any content has been streamed to the client,
      NO fallback or retry is allowed.

This prevents:
- Duplicate content delivery
- Inconsistent responses
- Client confusion from mixed provider outputs

Fallback is ONLY allowed:
- Before any content is streamed (pre-content phase)
- For non-streaming requests that fail completely
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Sequence

from ..core.models import HealthStatus


class FallbackPhase(str, Enum):
    """
    Request phases for fallback eligibility.

    PRE_CONTENT: Before any content sent - fallback allowed
    CONTENT_STARTED: Content streaming begun - NO fallback
    COMPLETED: Request finished - NO fallback
    """
    PRE_CONTENT = "pre_content"
    CONTENT_STARTED = "content_started"
    COMPLETED = "completed"


class RequestPhaseTracker:
    """
    Tracks the phase of a request for semantic drift protection.

    Usage:
        tracker = RequestPhaseTracker(request_id)

        # When a content chunk reaches the caller
        tracker.record_delivery(chunk)

        # If error after content
        if not tracker.can_fallback():
            # Must return error with partial_content, no retry!
    """

    def __init__(self, request_id: str):
        self.request_id = request_id
        self.phase = FallbackPhase.PRE_CONTENT
        self.partial_content: str = ""
        self.chunks_delivered: int = 0

    def can_fallback(self) -> bool:
        """True only while nothing has been delivered."""
        return self.phase == FallbackPhase.PRE_CONTENT

    def record_delivery(self, content: str):
        """Record a chunk handed to the caller."""
        if self.phase == FallbackPhase.PRE_CONTENT:
            self.phase = FallbackPhase.CONTENT_STARTED
        self.partial_content += content
        self.chunks_delivered += 1

    def mark_completed(self):
        """Mark request as completed."""
        self.phase = FallbackPhase.COMPLETED


@dataclass(frozen=True)
class Candidate:
    """One provider/model pair to try."""
    provider_id: str
    model: str

    @property
    def qualified_model(self) -> str:
        return f"{self.provider_id}/{self.model}"


def parse_target(target: str) -> Candidate:
    """Parse a ``provider/model`` route target."""
    provider_id, model = target.split("/", 1)
    return Candidate(provider_id=provider_id, model=model)


class CandidateResolver:
    """
    Turns a requested model into an ordered candidate list.

    - ``provider/model`` maps to exactly that adapter
    - a logical name maps to its configured preference list
    Targets whose provider has no registered adapter are dropped.
    """

    def __init__(
        self,
        model_routes: Mapping[str, Sequence[str]],
        available_providers: Iterable[str]
    ):
        self.routes: Dict[str, List[Candidate]] = {
            alias: [parse_target(target) for target in targets]
            for alias, targets in model_routes.items()
        }
        self.available = set(available_providers)

    def resolve(self, model: str) -> List[Candidate]:
        """
        Ordered candidates for ``model``; empty if nothing can serve it.
        """
        if model in self.routes:
            candidates = self.routes[model]
        elif "/" in model:
            candidates = [parse_target(model)]
        else:
            return []

        resolved: List[Candidate] = []
        for candidate in candidates:
            if candidate.provider_id in self.available and candidate not in resolved:
                resolved.append(candidate)
        return resolved

    def known_models(self) -> List[str]:
        """Logical model names with a configured route."""
        return sorted(self.routes)


def order_by_health(
    candidates: Sequence[Candidate],
    statuses: Mapping[str, HealthStatus]
) -> List[Candidate]:
    """
    Move unhealthy candidates to the end, keeping relative order.

    Nothing is removed: an all-unhealthy list is returned unchanged.
    """
    preferred = [c for c in candidates if statuses.get(c.provider_id) != HealthStatus.UNHEALTHY]
    demoted = [c for c in candidates if statuses.get(c.provider_id) == HealthStatus.UNHEALTHY]
    return preferred + demoted
