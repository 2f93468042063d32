from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from taskforge.models import DecisionRecord, new_id, utcnow_iso

SEVERITY_LEVELS = {"info": 0.0, "warning": 1.0, "error": 2.0, "critical": 3.0}
NO_OPTION_REASONING = "No suitable option"

DecisionSink = Callable[[DecisionRecord], None]


@dataclass(frozen=True, slots=True)
class DecisionResult:
    chosen: dict[str, Any]
    confidence: float
    reasoning: str
    scores: tuple[float, ...] = field(default_factory=tuple)
    record_id: str | None = None


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def severity_value(raw: Any) -> float:
    if raw is None:
        return 0.0
    if isinstance(raw, str):
        normalized = raw.strip().lower()
        if normalized in SEVERITY_LEVELS:
            return SEVERITY_LEVELS[normalized]
    return max(0.0, _as_float(raw))


def score_option(context: dict[str, Any], option: dict[str, Any]) -> float:
    score = _as_float(option.get("priority"), 5.0) * 10
    if option.get("urgent"):
        score += 25
    score += (10 - _as_float(option.get("complexity"), 5.0)) * 5
    score += _as_float(option.get("success_probability"), 0.5) * 30
    score -= _as_float(option.get("resource_cost")) * 2
    if option.get("fixes_errors") and context.get("error_severity") is not None:
        score += severity_value(context.get("error_severity")) * 15
    return score


class DecisionEngine:
    """Weighted scoring over candidate options.

    ``choose`` is deterministic for identical inputs: the highest score wins
    and the earliest option wins a tie.
    """

    def __init__(self, sink: DecisionSink | None = None) -> None:
        self.sink = sink

    def choose(self, context: dict[str, Any], options: list[dict[str, Any]]) -> DecisionResult:
        if not options:
            result = DecisionResult(chosen={}, confidence=0.0, reasoning=NO_OPTION_REASONING)
            return self._record(context, options, result)

        scores = tuple(score_option(context, option) for option in options)
        best_index = 0
        for index, score in enumerate(scores):
            if score > scores[best_index]:
                best_index = index
        best_score = scores[best_index]
        chosen = dict(options[best_index])
        confidence = min(max(best_score, 0.0) / 100.0, 1.0)
        label = chosen.get("name") or chosen.get("id") or f"option {best_index}"
        reasoning = (
            f"Selected {label} with score {best_score:.1f} "
            f"out of {len(options)} option(s)"
        )
        if len(scores) > 1:
            runner_up = max(score for index, score in enumerate(scores) if index != best_index)
            reasoning += f"; margin {best_score - runner_up:.1f} over the next best"
        result = DecisionResult(
            chosen=chosen,
            confidence=confidence,
            reasoning=reasoning,
            scores=scores,
        )
        return self._record(context, options, result)

    def _record(
        self,
        context: dict[str, Any],
        options: list[dict[str, Any]],
        result: DecisionResult,
    ) -> DecisionResult:
        record = DecisionRecord(
            id=new_id("dec"),
            timestamp=utcnow_iso(),
            context=dict(context),
            options=tuple(dict(option) for option in options),
            chosen_option=dict(result.chosen),
            confidence=result.confidence,
            reasoning=result.reasoning,
        )
        if self.sink is not None:
            self.sink(record)
        return DecisionResult(
            chosen=result.chosen,
            confidence=result.confidence,
            reasoning=result.reasoning,
            scores=result.scores,
            record_id=record.id,
        )
