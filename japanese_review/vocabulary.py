"""
Vocabulary review scheduling.

Each (user, word) pair has at most one row holding the date the word is due
again. Submitting a result moves that date to today + the period the learner
chose; building a session mixes due words with words the learner has not
reviewed yet.
"""

import datetime
import logging
from typing import Dict, List, Optional, Sequence

from sqlalchemy import exists

from . import db
from .db import Word, WordReview
from .errors import NotFoundError, ValidationError
from .scheduler import PERIOD_MAX, PERIOD_MIN, next_appearance, period_in_range
from .structured import WordItem, WordResult

logger = logging.getLogger(__name__)

SESSION_COUNT_MIN = 10
SESSION_COUNT_MAX = 40

# locale -> (word translation column, example translation column)
TRANSLATION_FIELDS: Dict[str, tuple] = {
    "en": ("english_translation", "example_english_translation"),
    "ru": ("russian_translation", "example_russian_translation"),
    "de": ("german_translation", "example_german_translation"),
}


def _validate_locale(locale: str) -> str:
    normalized = locale.strip().lower() if isinstance(locale, str) else ""
    if normalized not in TRANSLATION_FIELDS:
        raise ValidationError(f"invalid locale: {locale}, must be 'en', 'ru', or 'de'")
    return normalized


def _to_item(word: Word, locale: str) -> WordItem:
    translation_field, example_field = TRANSLATION_FIELDS[locale]
    return WordItem(
        id=word.id,
        word=word.word,
        phonetic_clues=word.phonetic_clues,
        example=word.example,
        translation=getattr(word, translation_field),
        example_translation=getattr(word, example_field),
        easy_period=word.easy_period,
        normal_period=word.normal_period,
        hard_period=word.hard_period,
        extra_hard_period=word.extra_hard_period,
    )


# ----------------------------------------------------------------------
# Due-set store
# ----------------------------------------------------------------------

def get_due_word_ids(user_id: int, limit: int, today: Optional[datetime.date] = None) -> List[int]:
    """Word ids due for `user_id`, most overdue first, at most `limit` of them."""
    if limit < 0:
        raise ValidationError("limit must not be negative")
    if limit == 0:
        return []
    if today is None:
        today = datetime.date.today()

    with db.session_scope() as session:
        rows = (
            session.query(WordReview.word_id)
            .filter(WordReview.user_id == user_id, WordReview.next_appearance <= today)
            .order_by(WordReview.next_appearance.asc())
            .limit(limit)
            .all()
        )
    return [row.word_id for row in rows]


def upsert_word_results(user_id: int, results: Sequence[WordResult],
                        today: Optional[datetime.date] = None) -> None:
    """Set next_appearance = today + period for every result, in one statement.

    Periods are stored as given; range checks belong to submit_word_results().
    """
    if not results:
        raise ValidationError("results list cannot be empty")
    if today is None:
        today = datetime.date.today()

    # One row per word; a word repeated in the batch keeps its last period
    rows: Dict[int, Dict[str, object]] = {}
    for result in results:
        rows[result.word_id] = {
            "user_id": user_id,
            "word_id": result.word_id,
            "next_appearance": next_appearance(int(result.period), today),
        }

    with db.session_scope() as session:
        stmt = db.upsert_statement(
            session, WordReview, list(rows.values()),
            key=("user_id", "word_id"), update=("next_appearance",),
        )
        session.execute(stmt)
    logger.info("Scheduled %d words for user %s", len(rows), user_id)


# ----------------------------------------------------------------------
# Ingestion
# ----------------------------------------------------------------------

def submit_word_results(user_id: int, results: Sequence[WordResult],
                        today: Optional[datetime.date] = None) -> None:
    """Validate a batch of word results and schedule them.

    Raises ValidationError for an empty batch or a missing/out-of-range
    period, NotFoundError when a word id does not exist.
    """
    if not results:
        raise ValidationError("results list cannot be empty")
    for result in results:
        if result.period is None:
            raise ValidationError(f"period is required for word {result.word_id}")
        if not period_in_range(result.period):
            raise ValidationError(
                f"period must be between {PERIOD_MIN} and {PERIOD_MAX}, got: {result.period}"
            )

    word_ids = {result.word_id for result in results}
    with db.session_scope() as session:
        found = {row.id for row in session.query(Word.id).filter(Word.id.in_(list(word_ids))).all()}
    missing = sorted(word_ids - found)
    if missing:
        raise NotFoundError(f"words do not exist: {missing}")

    upsert_word_results(user_id, results, today=today)


# ----------------------------------------------------------------------
# Selection
# ----------------------------------------------------------------------

def _validate_session_params(new_count: int, old_count: int, locale: str) -> str:
    if not SESSION_COUNT_MIN <= new_count <= SESSION_COUNT_MAX:
        raise ValidationError(f"newCount must be between {SESSION_COUNT_MIN} and {SESSION_COUNT_MAX}")
    if not SESSION_COUNT_MIN <= old_count <= SESSION_COUNT_MAX:
        raise ValidationError(f"oldCount must be between {SESSION_COUNT_MIN} and {SESSION_COUNT_MAX}")
    return _validate_locale(locale)


def build_session(user_id: int, new_count: int, old_count: int, locale: str,
                  today: Optional[datetime.date] = None) -> List[WordItem]:
    """Compose a review session: due words first, then words to fill the session.

    Up to `old_count` due words are taken, most overdue first. Whatever part
    of `old_count` could not be filled with due words is added to
    `new_count`; those extra words are drawn at random from words the user
    has never reviewed, then from any other word not already selected.
    """
    try:
        locale = _validate_session_params(new_count, old_count, locale)
    except ValidationError:
        logger.warning("Rejected session request for user %s", user_id)
        raise

    due_ids = get_due_word_ids(user_id, old_count, today=today)
    target = new_count + (old_count - len(due_ids))

    with db.session_scope() as session:
        reviewed = exists().where(WordReview.word_id == Word.id, WordReview.user_id == user_id)
        never_query = session.query(Word.id).filter(~reviewed)
        if due_ids:
            never_query = never_query.filter(Word.id.notin_(due_ids))
        picked = [row.id for row in never_query.order_by(db.random_order(session)).limit(target).all()]

        if len(picked) < target:
            # Reviewed words never overlap the never-reviewed picks
            rest_query = session.query(Word.id).filter(reviewed)
            if due_ids:
                rest_query = rest_query.filter(Word.id.notin_(due_ids))
            rest = rest_query.order_by(db.random_order(session)).limit(target - len(picked)).all()
            picked += [row.id for row in rest]

        selected = due_ids + picked
        words = session.query(Word).filter(Word.id.in_(selected)).all() if selected else []

    by_id = {word.id: word for word in words}
    if len(by_id) < len(selected):
        logger.debug("%d selected words vanished before hydration", len(selected) - len(by_id))
    logger.debug("Session for user %s: %d due, %d extra", user_id, len(due_ids), len(picked))
    return [_to_item(by_id[word_id], locale) for word_id in selected if word_id in by_id]


def get_word(word_id: int, locale: str) -> WordItem:
    locale = _validate_locale(locale)
    with db.session_scope() as session:
        word = session.get(Word, word_id)
    if word is None:
        raise NotFoundError(f"word {word_id} not found")
    return _to_item(word, locale)
