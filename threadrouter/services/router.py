"""
Confidence Router

Chooses exactly one output per task. Each non-default output whose accepted
topics contain the task topic scores 1/len(accepted_topics), so a narrowly
scoped output beats a broad one. When the top two candidates are too close,
the task goes to the flow's default output instead.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from threadrouter.models.records import Output
from threadrouter.models.tasks import DetectedTask
from threadrouter.utils.helpers import normalize_topic

logger = logging.getLogger(__name__)

DEFAULT_GAP_THRESHOLD = 0.5


class NoDefaultOutputError(Exception):
    """Raised when routing is attempted without a default output."""

    retryable = False


@dataclass
class RoutingDecision:
    output: Output
    confidence: float
    reason: str
    candidates: List[Tuple[str, float]] = field(default_factory=list)


def topic_confidence(topic: str, output: Output) -> Optional[float]:
    """1/len(accepted_topics) when the output accepts the topic, else None."""
    accepted = {normalize_topic(t) for t in output.accepted_topics}
    accepted.discard(None)
    if not accepted or topic not in accepted:
        return None
    return 1.0 / len(accepted)


class ConfidenceRouter:
    """Routes detected tasks to outputs by topic specificity."""

    def __init__(self, gap_threshold: float = DEFAULT_GAP_THRESHOLD):
        self.gap_threshold = gap_threshold

    def route(self, task: DetectedTask, outputs: List[Output]) -> RoutingDecision:
        """
        Pick the output for a task.

        Args:
            task: Detected task (topic may be None)
            outputs: Outputs of the flow, including exactly one default

        Returns:
            RoutingDecision with the chosen output and its confidence

        Raises:
            NoDefaultOutputError: No active default output is present
        """
        default = next((o for o in outputs if o.is_default and o.active), None)
        if default is None:
            raise NoDefaultOutputError("Routing requires a default output")

        topic = normalize_topic(task.topic)
        if topic is None:
            return RoutingDecision(default, 0.0, "no topic")

        candidates: List[Tuple[Output, float]] = []
        for output in outputs:
            if output.is_default or not output.active:
                continue
            confidence = topic_confidence(topic, output)
            if confidence is not None:
                candidates.append((output, confidence))

        candidates.sort(key=lambda c: c[1], reverse=True)
        scored = [(o.id, c) for o, c in candidates]

        if not candidates:
            return RoutingDecision(default, 0.0, f"no output accepts '{topic}'", scored)

        if len(candidates) == 1:
            output, confidence = candidates[0]
            return RoutingDecision(output, confidence, "single match", scored)

        (best, best_score), (_, second_score) = candidates[0], candidates[1]
        gap = (best_score - second_score) / second_score

        if gap >= self.gap_threshold:
            logger.debug(f"Routing '{task.title}' to {best.name} (gap {gap:.2f})")
            return RoutingDecision(best, best_score, f"best match (gap {gap:.2f})", scored)

        logger.info(
            f"Ambiguous routing for '{task.title}' (gap {gap:.2f} < {self.gap_threshold}); "
            f"using default output {default.name}"
        )
        return RoutingDecision(default, best_score, f"ambiguous (gap {gap:.2f})", scored)
