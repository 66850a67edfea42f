from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from defi_core.utils import get_logger
from defi_core.validation import ValidationError, require_score

__all__ = [
    "QUESTIONNAIRE_VERSION",
    "QUESTIONNAIRE",
    "QuestionOption",
    "Question",
    "QuestionnaireAnswer",
    "RiskProfile",
    "RiskAssessment",
    "PROFILE_BANDS",
    "parse_answers",
    "compute_risk_score",
    "risk_profile_for_score",
    "assess_risk",
]

log = get_logger(__name__)


# ============================================================================
# Questionnaire table (static, versioned)
# ============================================================================

@dataclass(frozen=True)
class QuestionOption:
    value: str
    label: str
    points: int


@dataclass(frozen=True)
class Question:
    question_id: str
    prompt: str
    options: Tuple[QuestionOption, ...]

    @property
    def max_points(self) -> int:
        return max(o.points for o in self.options)

    def option(self, value: str) -> Optional[QuestionOption]:
        for o in self.options:
            if o.value == value:
                return o
        return None


def _q(question_id: str, prompt: str, *options: Tuple[str, str, int]) -> Question:
    return Question(question_id, prompt, tuple(QuestionOption(v, l, p) for v, l, p in options))


# Bump the version whenever a point value changes: stored assessments carry it.
# Every question has five options, the lowest worth 0 and the rest symmetric
# around the middle one, so all-min = 0, all-max = 100 and all-middle = 50.
QUESTIONNAIRE_VERSION = "2"

QUESTIONNAIRE: Tuple[Question, ...] = (
    _q("age", "What's your age?",
       ("18-25", "18-25 years old", 20),
       ("26-35", "26-35 years old", 15),
       ("36-50", "36-50 years old", 10),
       ("51-65", "51-65 years old", 5),
       ("65+", "Over 65 years old", 0)),
    _q("income", "What's your annual income?",
       ("under-40k", "Under $40,000", 0),
       ("40k-80k", "$40,000 - $80,000", 5),
       ("80k-150k", "$80,000 - $150,000", 10),
       ("150k-300k", "$150,000 - $300,000", 15),
       ("over-300k", "Over $300,000", 20)),
    _q("expenses", "What share of your income goes to living expenses?",
       ("over-80pct", "More than 80%", 0),
       ("60-80pct", "60% - 80%", 5),
       ("40-60pct", "40% - 60%", 10),
       ("20-40pct", "20% - 40%", 15),
       ("under-20pct", "Less than 20%", 20)),
    _q("goal", "What's your primary investment goal?",
       ("short_term", "Short-term savings (< 2 years)", 0),
       ("medium_term", "Medium-term goals (2-5 years)", 5),
       ("long_term", "Long-term growth (5-10 years)", 10),
       ("retirement", "Retirement planning (10+ years)", 15),
       ("max_growth", "Maximum long-run growth", 20)),
    _q("risk_tolerance", "How do you feel about investment risk?",
       ("very_low", "Very Conservative - Safety is my top priority", 0),
       ("low", "Conservative - I prefer stable, lower returns", 8),
       ("medium", "Balanced - I want moderate risk and returns", 15),
       ("high", "Growth-oriented - Higher risk for better returns", 22),
       ("very_high", "Aggressive - Maximum growth potential", 30)),
    _q("experience", "How experienced are you with DeFi and crypto investing?",
       ("none", "Complete beginner", 0),
       ("beginner", "Basic understanding", 5),
       ("intermediate", "Comfortable with DeFi", 10),
       ("advanced", "Very experienced", 15),
       ("expert", "DeFi expert", 20)),
)

_QUESTIONS_BY_ID: Dict[str, Question] = {q.question_id: q for q in QUESTIONNAIRE}


# ============================================================================
# Answers and profiles
# ============================================================================

@dataclass(frozen=True)
class QuestionnaireAnswer:
    question_id: str
    selected_option_value: str


class RiskProfile(str, Enum):
    CONSERVATIVE = "Conservative"
    BALANCED = "Balanced"
    AGGRESSIVE = "Aggressive"


# Inclusive, contiguous, non-overlapping: mirrors the vault contract's RISK_RANGES
PROFILE_BANDS: Tuple[Tuple[RiskProfile, int, int], ...] = (
    (RiskProfile.CONSERVATIVE, 0, 33),
    (RiskProfile.BALANCED, 34, 66),
    (RiskProfile.AGGRESSIVE, 67, 100),
)


def parse_answers(payload: Any) -> List[QuestionnaireAnswer]:
    """Convert a loosely-typed API payload into QuestionnaireAnswer objects.

    Accepts either a list of ``{"questionId": ..., "selectedOptionValue": ...}``
    dicts (snake_case keys work too) or a plain ``{question_id: value}`` map.
    Only the shape is checked here; :func:`compute_risk_score` validates content.
    """
    if isinstance(payload, Mapping):
        items = [{"questionId": k, "selectedOptionValue": v} for k, v in payload.items()]
    elif isinstance(payload, (list, tuple)):
        items = list(payload)
    else:
        raise ValidationError("answers must be a list of answers or a mapping", field="answers")

    out: List[QuestionnaireAnswer] = []
    for i, item in enumerate(items):
        if isinstance(item, QuestionnaireAnswer):
            out.append(item)
            continue
        if not isinstance(item, Mapping):
            raise ValidationError(f"answer #{i} must be an object", field="answers")
        qid = item.get("questionId", item.get("question_id"))
        val = item.get("selectedOptionValue", item.get("selected_option_value"))
        if not isinstance(qid, str) or not isinstance(val, str):
            raise ValidationError(
                f"answer #{i} needs string questionId and selectedOptionValue", field="answers"
            )
        out.append(QuestionnaireAnswer(qid, val))
    return out


def _selected_options(answers: Iterable[QuestionnaireAnswer]) -> Dict[str, QuestionOption]:
    selected: Dict[str, QuestionOption] = {}
    for ans in answers:
        question = _QUESTIONS_BY_ID.get(ans.question_id)
        if question is None:
            raise ValidationError(f"Unknown question '{ans.question_id}'", field=ans.question_id)
        if ans.question_id in selected:
            raise ValidationError(f"Question '{ans.question_id}' answered more than once",
                                  field=ans.question_id)
        option = question.option(ans.selected_option_value)
        if option is None:
            raise ValidationError(
                f"'{ans.selected_option_value}' is not a valid option for '{ans.question_id}'",
                field=ans.question_id,
            )
        selected[ans.question_id] = option

    missing = [q.question_id for q in QUESTIONNAIRE if q.question_id not in selected]
    if missing:
        raise ValidationError(f"Unanswered required questions: {', '.join(missing)}",
                              field=missing[0])
    return selected


def compute_risk_score(answers: Iterable[QuestionnaireAnswer]) -> int:
    """
    Compute the 0-100 risk score for a complete set of questionnaire answers.

    score = round_half_up(100 * sum(selected points) / sum(max points per question))

    Integer arithmetic keeps the half-up rounding exact, so identical answer
    sets always give identical scores.

    Raises:
        ValidationError: a required question is unanswered, answered twice,
            unknown, or answered with an unrecognized option.
    """
    try:
        selected = _selected_options(answers)
    except ValidationError as e:
        log.warning("Rejected questionnaire: %s", e)
        raise

    total = sum(o.points for o in selected.values())
    max_total = sum(q.max_points for q in QUESTIONNAIRE)
    # round(100 * total / max_total) with halves rounded up
    score = (200 * total + max_total) // (2 * max_total)
    return max(0, min(100, int(score)))


def risk_profile_for_score(score: int) -> RiskProfile:
    """Map an integer score in [0, 100] to its profile band."""
    s = require_score(score)
    for profile, lo, hi in PROFILE_BANDS:
        if lo <= s <= hi:
            return profile
    raise AssertionError(f"profile bands do not cover {s}")


# ============================================================================
# RiskAssessment: result of one onboarding or re-assessment
# ============================================================================

@dataclass(frozen=True)
class RiskAssessment:
    """
    Immutable outcome of one questionnaire submission.

    A re-assessment produces a new RiskAssessment that replaces the previous
    one wholesale; the server-side profile store keyed by ``user_id`` is the
    single source of truth and passes the record back into the engines.
    """
    risk_score: int
    risk_profile: RiskProfile
    answers: Tuple[QuestionnaireAnswer, ...]
    user_id: Optional[str] = None
    questionnaire_version: str = QUESTIONNAIRE_VERSION
    assessed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "riskScore": self.risk_score,
            "riskProfile": self.risk_profile.value,
            "questionnaireVersion": self.questionnaire_version,
            "assessedAt": self.assessed_at.isoformat(),
            "answers": [
                {"questionId": a.question_id, "selectedOptionValue": a.selected_option_value}
                for a in self.answers
            ],
        }


def assess_risk(
    answers: Any,
    user_id: Optional[str] = None,
    assessed_at: Optional[datetime] = None,
) -> RiskAssessment:
    """Score a questionnaire and wrap the result in a RiskAssessment.

    ``answers`` may be QuestionnaireAnswer objects or a raw API payload
    (see :func:`parse_answers`).
    """
    parsed = tuple(parse_answers(answers))
    score = compute_risk_score(parsed)
    profile = risk_profile_for_score(score)
    log.debug("Risk assessed user=%s score=%d profile=%s", user_id, score, profile.value)
    kwargs: Dict[str, Any] = {}
    if assessed_at is not None:
        kwargs["assessed_at"] = assessed_at
    return RiskAssessment(
        risk_score=score,
        risk_profile=profile,
        answers=parsed,
        user_id=user_id,
        **kwargs,
    )
