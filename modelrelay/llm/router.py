"""
Adaptive Router — picks a model for a task and learns from outcomes.

Selection is a table walk: task type → complexity tier → ordered
shortlist (preferred or budget) → first model present in the capability
registry. List order is the preference order, so the same context and
registry always give the same model. Outcomes are still recorded on
every call, feeding get_performance_insights().

Usage:
    from modelrelay.llm.router import AdaptiveRouter, TaskContext

    router = AdaptiveRouter()
    ctx = TaskContext(task_type="risk_assessment", domain="finance")

    model = router.select_model(ctx)                  # → "o3"
    backup = router.select_model(ctx.escalated(), exclude={model})
    router.record_outcome(model, ctx.task_type, elapsed_ms=950.0, success=True)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Collection, Optional

from modelrelay.llm.llm_config import SAFE_DEFAULT_MODEL, CapabilityRegistry
from modelrelay.llm.performance import PerformanceRecord, PerformanceTracker

logger = logging.getLogger(__name__)

# Minimum recorded calls before insights claim enough data
INSIGHT_MIN_REQUESTS = 10


# ---------------------------------------------------------------------------
# Task Context
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TaskContext:
    """Caller-supplied description of the work; only task_type is required."""

    task_type: str
    domain: str = "general"
    urgency: str = "normal"          # low, normal, high, critical
    complexity: str = "moderate"     # used when task_type is not mapped

    def escalated(self) -> TaskContext:
        """Copy used to pick a backup model after a failure."""
        return replace(self, urgency="high")


# ---------------------------------------------------------------------------
# Adaptive Router
# ---------------------------------------------------------------------------

class AdaptiveRouter:
    """
    Chooses models from the capability registry and owns the
    performance statistics.
    """

    def __init__(
        self,
        registry: Optional[CapabilityRegistry] = None,
        tracker: Optional[PerformanceTracker] = None,
    ):
        self._registry = registry if registry is not None else CapabilityRegistry()
        self._tracker = tracker if tracker is not None else PerformanceTracker()

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    @property
    def tracker(self) -> PerformanceTracker:
        return self._tracker

    # --- Selection ---

    def select_model(
        self,
        task_context: TaskContext,
        budget_mode: str = "preferred",
        exclude: Collection[str] = (),
    ) -> str:
        """
        Pick a model id for a task.

        Args:
            task_context: The task being served.
            budget_mode: "preferred" or "budget" shortlist.
            exclude: Model ids to skip (a model that just failed).

        Returns:
            The first registered, non-excluded model on the tier's
            shortlist, or SAFE_DEFAULT_MODEL when none remains.
        """
        tier_name = self._registry.tier_for_task(
            task_context.task_type, task_context.complexity
        )
        tier = self._registry.tier(tier_name)
        if tier is None:
            logger.warning(
                "tier_not_configured",
                extra={"task_type": task_context.task_type, "tier": tier_name.value},
            )
            return SAFE_DEFAULT_MODEL

        candidates = [
            model for model in tier.models_for(budget_mode)
            if model in self._registry and model not in exclude
        ]
        if not candidates:
            logger.warning(
                "no_registered_model_for_tier",
                extra={
                    "task_type": task_context.task_type,
                    "tier": tier_name.value,
                    "budget_mode": budget_mode,
                    "model": SAFE_DEFAULT_MODEL,
                },
            )
            return SAFE_DEFAULT_MODEL

        selected = candidates[0]
        logger.info(
            "model_selected",
            extra={
                "model": selected,
                "task_type": task_context.task_type,
                "tier": tier_name.value,
                "budget_mode": budget_mode,
            },
        )
        return selected

    # --- Outcomes ---

    def record_outcome(
        self,
        model_id: str,
        task_type: str,
        elapsed_ms: float,
        success: bool,
    ) -> PerformanceRecord:
        return self._tracker.record(model_id, task_type, elapsed_ms, success)

    # --- Prompt and explanation helpers ---

    def enhance_prompt(self, prompt: str, task_context: TaskContext, model_id: str) -> str:
        """Wrap the prompt with the task and the model's strengths."""
        profile = self._registry.get(model_id)
        if profile is None:
            return prompt

        strengths = ", ".join(profile.strengths)
        return (
            f"[Task: {task_context.task_type} | Domain: {task_context.domain} "
            f"| Model Strengths: {strengths}]\n\n"
            f"{prompt}\n\n"
            f"[Please leverage your strengths in {strengths} to provide the most "
            f"accurate and insightful response possible.]"
        )

    def explain_selection(self, model_id: str, task_context: TaskContext) -> str:
        profile = self._registry.get(model_id)
        if profile is None:
            return (
                f"Selected {model_id} for {task_context.task_type}: "
                f"no registered model fit the tier, using the safe default."
            )
        return (
            f"Selected {model_id} for {task_context.task_type} due to strong "
            f"{' and '.join(profile.strengths)} capabilities, matching domain "
            f"expertise in {', '.join(sorted(profile.domains))}."
        )

    # --- Analytics ---

    def get_performance_insights(self) -> dict[str, Any]:
        """Per-model and per-task success rates, average times and totals."""
        insights: dict[str, Any] = {
            "model_performance": {},
            "provider_load": self._tracker.provider_load(),
            "recommendations": [],
            "total_requests": 0,
        }

        for (model, task_type), stats in sorted(self._tracker.snapshot().items()):
            entry = insights["model_performance"].setdefault(
                model,
                {"tasks": {}, "overall": {"total": 0, "successes": 0}},
            )
            entry["tasks"][task_type] = {
                "success_rate": f"{stats.success_rate * 100:.1f}%",
                "avg_response_time": f"{round(stats.rolling_avg_response_time_ms)}ms",
                "total_requests": stats.total_calls,
            }
            entry["overall"]["total"] += stats.total_calls
            entry["overall"]["successes"] += stats.success_count
            insights["total_requests"] += stats.total_calls

        if insights["total_requests"] > INSIGHT_MIN_REQUESTS:
            insights["recommendations"].append(
                "Sufficient data collected for performance-based routing"
            )

        return insights
