import logging
from typing import Callable, List, Optional, Sequence

from . import characters
from .db import mastery_field
from .errors import NotFoundError, ValidationError
from .scheduler import MasteryBlend, apply_blend
from .structured import MasteryScores, RepeatContext, SubmitResult, TestResult

logger = logging.getLogger(__name__)

REPEAT_IN_QUESTION = "in question"
REPEAT_IGNORE = "ignore"
REPEAT_REPEAT = "repeat"
REPEAT_FLAGS = (REPEAT_IN_QUESTION, REPEAT_IGNORE, REPEAT_REPEAT)

FULL_MARKS_TOLERANCE = 0.001

RepeatPolicy = Callable[[RepeatContext], bool]


def full_marks_policy(context: RepeatContext) -> bool:
    """Ask about re-queuing the alphabet once every field of every character is at full marks.

    Only users who have not answered yet ("in question") are asked.
    """
    if context.repeat_flag != REPEAT_IN_QUESTION or context.total_characters == 0:
        return False
    return abs(context.score_sum - context.max_score_sum) <= FULL_MARKS_TOLERANCE


def _validate_submission(script: str, skill: str, results: Sequence[TestResult], repeat_flag: str) -> tuple:
    script = characters.validate_script(script)
    skill = characters.validate_skill(skill)
    if repeat_flag not in REPEAT_FLAGS:
        raise ValidationError(f"invalid repeat flag: {repeat_flag}, must be 'in question', 'ignore', or 'repeat'")
    if not results:
        raise ValidationError("results array cannot be empty")
    for result in results:
        if result.passed is None:
            raise ValidationError(f"passed is required for character {result.character_id}")
    return script, skill


def submit_results(user_id: int, script: str, skill: str, results: Sequence[TestResult],
                   repeat_flag: Optional[str] = None,
                   blend: Optional[MasteryBlend] = None,
                   repeat_policy: Optional[RepeatPolicy] = None) -> SubmitResult:
    """
    Store the outcome of one character test.

    Only the (script, skill) score of each character is recomputed and
    written; the other five stay as stored, or 0 for a first result. Script
    and skill are matched case-insensitively. All rows are written by one
    atomic upsert.

    Args:
        repeat_flag: the user's current "repeat the alphabet" preference,
            "in question" when not supplied. Advisory: it only feeds the
            repeat policy.
        blend: (prior, passed) -> new score. Any blend is held to "a pass
            never lowers, a failure never raises".
        repeat_policy: decides ask_for_repeat once the results are stored.
    """
    if repeat_flag is None:
        repeat_flag = REPEAT_IN_QUESTION
    try:
        script, skill = _validate_submission(script, skill, results, repeat_flag)
    except ValidationError as exc:
        logger.warning("Rejected test results for user %s: %s", user_id, exc)
        raise
    field = mastery_field(script, skill)

    requested = [result.character_id for result in results]
    missing = sorted(set(requested) - characters.existing_character_ids(requested))
    if missing:
        raise NotFoundError(f"characters do not exist: {missing}")

    existing = characters.get_scores(user_id, requested)
    records: List[MasteryScores] = []
    for result in results:
        record = existing.get(result.character_id)
        if record is None:
            record = MasteryScores(user_id=user_id, character_id=result.character_id)
            existing[result.character_id] = record
        setattr(record, field, apply_blend(getattr(record, field), bool(result.passed), blend))
        records.append(record)
    # Only the tested score is written back to rows that already exist
    characters.upsert_mastery(records, update_fields=(field,))

    if repeat_policy is None:
        repeat_policy = full_marks_policy
    total_characters, score_sum = characters.mastery_totals(user_id)
    ask = bool(repeat_policy(RepeatContext(
        user_id=user_id,
        repeat_flag=repeat_flag,
        total_characters=total_characters,
        score_sum=score_sum,
    )))
    logger.info("Stored %d %s %s results for user %s", len(records), script, skill, user_id)
    return SubmitResult(ask_for_repeat=ask)


def drop_marks(user_id: int) -> int:
    """Maintenance entry point: one decay step for every mastery score of the user."""
    return characters.decay(user_id)
