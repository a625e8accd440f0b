import datetime
from typing import Any, Callable, Optional

from sqlalchemy import case

PERIOD_MIN = 1
PERIOD_MAX = 30

SCORE_MIN = 0.0
SCORE_MAX = 1.0
DECAY_STEP = 0.01

# (prior score, passed) -> new score
MasteryBlend = Callable[[float, bool], float]


def next_appearance(period: int, today: Optional[datetime.date] = None) -> datetime.date:
    """
    Fixed-tier vocabulary scheduling.

    Every word carries four caller-visible periods (easy / normal / hard /
    extra-hard, in days). The learner picks one after seeing the word and the
    word becomes due exactly that many days from today. There is no ease
    factor and no growth between reviews: the tier chosen last time is
    forgotten, only the resulting date is stored.

    Returns:
        today + period days
    """
    if today is None:
        today = datetime.date.today()
    return today + datetime.timedelta(days=period)


def period_in_range(period: int) -> bool:
    return PERIOD_MIN <= period <= PERIOD_MAX


def clamp_score(score: float) -> float:
    return max(SCORE_MIN, min(SCORE_MAX, float(score)))


def decay_expression(column: Any) -> Any:
    """SQL expression for one decay step of a score column, floored at SCORE_MIN."""
    lowered = column - DECAY_STEP
    return case((lowered < SCORE_MIN, SCORE_MIN), else_=lowered)


def replace_blend(prior: float, passed: bool) -> float:
    """Default blend: a pass sets full marks, a failure resets to zero."""
    return SCORE_MAX if passed else SCORE_MIN


def apply_blend(prior: float, passed: bool, blend: Optional[MasteryBlend] = None) -> float:
    """
    Run a blend and hold it to the monotonicity contract.

    Whatever the blend returns, a pass never lowers the prior score and a
    failure never raises it. The result is clamped to [0, 1].
    """
    if blend is None:
        blend = replace_blend
    prior = clamp_score(prior)
    candidate = clamp_score(blend(prior, passed))
    if passed:
        return max(prior, candidate)
    return min(prior, candidate)
