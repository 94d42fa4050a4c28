# rules.py
import math
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, Optional

RISK_LOW = "Low"
RISK_MODERATE = "Moderate"
RISK_HIGH = "High"

# weights are fixed, not runtime configurable
W_SLEEP = 30
W_STUDY = 30
W_VITALITY = 20
W_EXAM = 0.2
SCREEN_PENALTY_PER_HOUR = 2
FOCUS_BONUS = 5


class InvalidMetricError(ValueError):
    """A metric write was rejected; the previous value stays in place."""


@dataclass(frozen=True)
class DailyMetrics:
    sleep: float = 0.0              # hours
    study: float = 0.0              # hours
    exercise: float = 0.0           # 0-10 scale, 10 ~ 10k steps
    screen_time: float = 0.0        # hours
    idle_time: float = 0.0          # hours
    active_focus_time: float = 0.0  # hours
    steps: int = 0
    calories: int = 0
    heart_rate: int = 0
    score: int = 0
    burnout_risk: str = RISK_LOW

    def to_document(self, keys: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        wanted = set(keys) if keys is not None else set(DOCUMENT_FIELDS)
        return {doc: getattr(self, attr) for doc, attr in DOCUMENT_FIELDS.items() if doc in wanted}

    @classmethod
    def from_document(cls, doc: Optional[Dict[str, Any]]) -> "DailyMetrics":
        if not doc:
            return cls()
        return cls().merged({k: v for k, v in doc.items() if k in DOCUMENT_FIELDS and v is not None})

    def merged(self, doc_changes: Dict[str, Any]) -> "DailyMetrics":
        """Copy with camelCase document fields applied."""
        return replace(self, **{DOCUMENT_FIELDS[k]: v for k, v in doc_changes.items()})


# camelCase document field -> attribute
DOCUMENT_FIELDS = {
    "sleep": "sleep",
    "study": "study",
    "exercise": "exercise",
    "screenTime": "screen_time",
    "idleTime": "idle_time",
    "activeFocusTime": "active_focus_time",
    "steps": "steps",
    "calories": "calories",
    "heartRate": "heart_rate",
    "score": "score",
    "burnoutRisk": "burnout_risk",
}
INT_FIELDS = {"steps", "calories", "heartRate", "score"}
EDITABLE_FIELDS = {"sleep", "study", "exercise", "screenTime", "steps", "calories", "heartRate"}


def validate_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce a {documentField: value} mapping, raising InvalidMetricError on bad input."""
    clean = {}
    for key, value in changes.items():
        if key not in DOCUMENT_FIELDS:
            raise InvalidMetricError(f"Unknown metric field '{key}'")
        if key == "burnoutRisk":
            if value not in (RISK_LOW, RISK_MODERATE, RISK_HIGH):
                raise InvalidMetricError(f"Invalid burnout risk '{value}'")
            clean[key] = value
            continue
        if isinstance(value, bool):
            raise InvalidMetricError(f"{key}: expected a number, got {value!r}")
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise InvalidMetricError(f"{key}: expected a number, got {value!r}")
        if not math.isfinite(number) or number < 0:
            raise InvalidMetricError(f"{key}: must be a finite non-negative number, got {value!r}")
        clean[key] = int(round(number)) if key in INT_FIELDS else number
    return clean


def exam_average_percent(exams: Iterable[Any]) -> float:
    """Mean of achieved/total*100 over graded exams; 0 when none are graded.

    Accepts ORM rows or anything with ``score`` and ``total_marks``.
    """
    percents = [
        e.score / e.total_marks * 100.0
        for e in exams
        if e.score is not None and e.total_marks
    ]
    if not percents:
        return 0.0
    return sum(percents) / len(percents)


def _focus_ratio(m: DailyMetrics) -> float:
    if m.screen_time <= 0:
        return 0.0
    return m.active_focus_time / m.screen_time


def calculate_score(m: DailyMetrics, exam_average: float = 0.0) -> int:
    # caps apply to the normalized value, before the weight
    sleep_component = min(m.sleep / 8, 1.2) * W_SLEEP
    study_component = min(m.study / 4, 1.5) * W_STUDY
    vitality_component = min(m.exercise / 10, 1.2) * W_VITALITY
    exam_component = exam_average * W_EXAM
    screen_penalty = m.screen_time * SCREEN_PENALTY_PER_HOUR

    raw = sleep_component + study_component + vitality_component + exam_component - screen_penalty
    if _focus_ratio(m) > 0.5:
        raw += FOCUS_BONUS
    return int(round(max(0.0, min(100.0, raw))))


def burnout_points(m: DailyMetrics) -> int:
    points = 0
    if m.sleep < 6:
        points += 3
    elif m.sleep < 7:
        points += 1

    if m.screen_time > 8:
        points += 3
    elif m.screen_time > 6:
        points += 1

    # sedentary penalty
    if (m.steps or 0) < 3000:
        points += 2

    # lots of idle screen time reads as distraction
    if (m.idle_time or 0) > 3:
        points += 1
    return points


def assess_burnout(m: DailyMetrics) -> str:
    points = burnout_points(m)
    if points >= 5:
        return RISK_HIGH
    if points >= 3:
        return RISK_MODERATE
    return RISK_LOW


def derive_outputs(m: DailyMetrics, exam_average: float = 0.0) -> Dict[str, Any]:
    """Score and burnout as document fields, ready to merge."""
    return {
        "score": calculate_score(m, exam_average),
        "burnoutRisk": assess_burnout(m),
    }
