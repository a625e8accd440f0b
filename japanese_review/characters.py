"""
Kana catalog, per-character mastery and test composition.

Mastery is kept as six independent scores per (user, character):
{hiragana, katakana} x {reading, writing, listening}, each in [0, 1]. A
character without a row has never been tested and counts as 0 everywhere.
"""

import logging
import random
from typing import Dict, List, Optional, Sequence, Union

from sqlalchemy import and_, exists, func, update
from sqlalchemy.orm import Session

from . import db
from .db import MASTERY_FIELDS, SCRIPTS, SKILLS, Character, CharacterMastery, mastery_field
from .errors import NotFoundError, ValidationError
from .scheduler import clamp_score, decay_expression
from .structured import (
    CharacterDetail,
    CharacterItem,
    ListeningTestItem,
    MasteryScores,
    ReadingTestItem,
    UserHistoryRow,
    WritingTestItem,
)

logger = logging.getLogger(__name__)

DEFAULT_TEST_COUNT = 10
DISTRACTOR_COUNT = 2
VOWELS = ("a", "i", "u", "e", "o")

# Character readings exist in English and Russian only; German learners get English.
READING_FIELDS: Dict[str, str] = {
    "en": "english_reading",
    "ru": "russian_reading",
    "de": "english_reading",
}

TestItem = Union[ReadingTestItem, WritingTestItem, ListeningTestItem]


def _normalized(value: object) -> str:
    return value.strip().lower() if isinstance(value, str) else ""


def validate_script(script: str) -> str:
    """Case-insensitive script check; returns the canonical lower-case name."""
    normalized = _normalized(script)
    if normalized not in SCRIPTS:
        raise ValidationError(f"invalid alphabet type: {script}, must be 'hiragana' or 'katakana'")
    return normalized


def validate_skill(skill: str) -> str:
    normalized = _normalized(skill)
    if normalized not in SKILLS:
        raise ValidationError(f"invalid test type: {skill}, must be 'reading', 'writing', or 'listening'")
    return normalized


def reading_field(locale: str) -> str:
    normalized = _normalized(locale)
    if normalized not in READING_FIELDS:
        raise ValidationError(f"invalid locale: {locale}, must be 'en', 'ru', or 'de'")
    return READING_FIELDS[normalized]


def _scores_from_row(row: CharacterMastery) -> MasteryScores:
    return MasteryScores(
        user_id=row.user_id,
        character_id=row.character_id,
        **{name: getattr(row, name) for name in MASTERY_FIELDS},
    )


# ----------------------------------------------------------------------
# Catalog
# ----------------------------------------------------------------------

def list_characters(script: str, locale: str) -> List[CharacterItem]:
    """All characters of one script with their locale reading, ordered by id."""
    script = validate_script(script)
    field = reading_field(locale)
    with db.session_scope() as session:
        rows = session.query(Character).order_by(Character.id.asc()).all()
    return [
        CharacterItem(id=c.id, character=getattr(c, script), reading=getattr(c, field),
                      consonant=c.consonant, vowel=c.vowel)
        for c in rows
    ]


def characters_by_group(script: str, locale: str, group: str) -> List[CharacterItem]:
    """Characters of one vowel column or consonant row.

    Only the matching group is reported on each item: `vowel` when searching
    by a vowel, `consonant` otherwise.
    """
    script = validate_script(script)
    field = reading_field(locale)
    if not group:
        raise ValidationError("character group is required")
    by_vowel = group in VOWELS
    with db.session_scope() as session:
        rows = (
            session.query(Character)
            .filter((Character.consonant == group) | (Character.vowel == group))
            .order_by(Character.id.asc())
            .all()
        )
    return [
        CharacterItem(
            id=c.id, character=getattr(c, script), reading=getattr(c, field),
            vowel=c.vowel if by_vowel else None,
            consonant=None if by_vowel else c.consonant,
        )
        for c in rows
    ]


def get_character(character_id: int, locale: str) -> CharacterDetail:
    if character_id <= 0:
        raise ValidationError("invalid character id")
    field = reading_field(locale)
    with db.session_scope() as session:
        c = session.get(Character, character_id)
    if c is None:
        raise NotFoundError(f"character {character_id} not found")
    return CharacterDetail(id=c.id, consonant=c.consonant, vowel=c.vowel,
                           hiragana=c.hiragana, katakana=c.katakana, reading=getattr(c, field))


def existing_character_ids(character_ids: Sequence[int]) -> set:
    with db.session_scope() as session:
        rows = session.query(Character.id).filter(Character.id.in_(list(set(character_ids)))).all()
    return {row.id for row in rows}


# ----------------------------------------------------------------------
# Mastery store
# ----------------------------------------------------------------------

def get_scores(user_id: int, character_ids: Sequence[int]) -> Dict[int, MasteryScores]:
    """Stored scores for the given characters. Characters never tested are absent."""
    if not character_ids:
        return {}
    with db.session_scope() as session:
        rows = (
            session.query(CharacterMastery)
            .filter(CharacterMastery.user_id == user_id,
                    CharacterMastery.character_id.in_(list(set(character_ids))))
            .all()
        )
    return {row.character_id: _scores_from_row(row) for row in rows}


def get_user_history(user_id: int) -> List[UserHistoryRow]:
    """Glyph pair and six scores for every character the user has a row for."""
    with db.session_scope() as session:
        rows = (
            session.query(CharacterMastery, Character.hiragana, Character.katakana)
            .join(Character, Character.id == CharacterMastery.character_id)
            .filter(CharacterMastery.user_id == user_id)
            .order_by(Character.id.asc())
            .all()
        )
    return [
        UserHistoryRow(
            character_id=mastery.character_id,
            character_hiragana=hiragana,
            character_katakana=katakana,
            **{name: getattr(mastery, name) for name in MASTERY_FIELDS},
        )
        for mastery, hiragana, katakana in rows
    ]


def upsert_mastery(records: Sequence[MasteryScores],
                   update_fields: Optional[Sequence[str]] = None) -> None:
    """Create or merge mastery rows in a single statement and transaction.

    New rows are inserted with all six scores. Rows that already exist only
    have `update_fields` overwritten (all six when omitted), so a writer that
    changes one score cannot clobber scores written by someone else meanwhile.
    """
    if not records:
        raise ValidationError("no mastery records to upsert")
    if update_fields is None:
        update_fields = MASTERY_FIELDS
    unknown = [name for name in update_fields if name not in MASTERY_FIELDS]
    if unknown or not update_fields:
        raise ValidationError(f"invalid mastery fields: {list(update_fields)}")

    rows: Dict[tuple, Dict[str, object]] = {}
    for record in records:
        row: Dict[str, object] = {"user_id": record.user_id, "character_id": record.character_id}
        for name in MASTERY_FIELDS:
            row[name] = clamp_score(getattr(record, name))
        rows[(record.user_id, record.character_id)] = row

    with db.session_scope() as session:
        stmt = db.upsert_statement(
            session, CharacterMastery, list(rows.values()),
            key=("user_id", "character_id"), update=list(update_fields),
        )
        session.execute(stmt)
    logger.info("Stored mastery for %d characters", len(rows))


def decay(user_id: int) -> int:
    """Lower every score of the user by one step, never below zero.

    Returns the number of rows touched; zero rows is not an error.
    """
    values = {name: decay_expression(getattr(CharacterMastery, name)) for name in MASTERY_FIELDS}

    with db.session_scope() as session:
        result = session.execute(
            update(CharacterMastery)
            .where(CharacterMastery.user_id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        touched = result.rowcount or 0
    logger.info("Decayed %d mastery rows for user %s", touched, user_id)
    return touched


def mastery_totals(user_id: int) -> tuple:
    """(number of characters in the catalog, sum of all six scores over the user's rows)."""
    score_sum = sum((getattr(CharacterMastery, name) for name in MASTERY_FIELDS[1:]),
                    getattr(CharacterMastery, MASTERY_FIELDS[0]))
    with db.session_scope() as session:
        total_characters = session.query(func.count(Character.id)).scalar() or 0
        user_sum = (
            session.query(func.coalesce(func.sum(score_sum), 0.0))
            .filter(CharacterMastery.user_id == user_id)
            .scalar()
        )
    return int(total_characters), float(user_sum or 0.0)


# ----------------------------------------------------------------------
# Test composition
# ----------------------------------------------------------------------

def _has_audio() -> object:
    return and_(Character.audio.isnot(None), Character.audio != "")


def _rank_character_ids(session: Session, user_id: int, field: str, count: int,
                        audio_only: bool) -> List[int]:
    """Never-tested characters first, then the lowest scores on `field`.

    Both queries are shuffled and limited in the database; ties on the
    score are broken at random.
    """
    tested = exists().where(CharacterMastery.character_id == Character.id,
                            CharacterMastery.user_id == user_id)
    unseen_query = session.query(Character.id).filter(~tested)
    if audio_only:
        unseen_query = unseen_query.filter(_has_audio())
    ranked = [row.id for row in unseen_query.order_by(db.random_order(session)).limit(count).all()]
    if len(ranked) >= count:
        return ranked

    score_column = getattr(CharacterMastery, field)
    scored_query = (
        session.query(CharacterMastery.character_id)
        .join(Character, Character.id == CharacterMastery.character_id)
        .filter(CharacterMastery.user_id == user_id)
    )
    if audio_only:
        scored_query = scored_query.filter(_has_audio())
    weakest = (
        scored_query
        .order_by(score_column.asc(), db.random_order(session))
        .limit(count - len(ranked))
        .all()
    )
    ranked += [row.character_id for row in weakest]
    return ranked


def _distractors(correct: str, glyphs: Sequence[str]) -> List[str]:
    candidates = sorted({glyph for glyph in glyphs if glyph and glyph != correct})
    return random.sample(candidates, min(DISTRACTOR_COUNT, len(candidates)))


def build_test(user_id: int, script: str, skill: str, locale: str,
               count: Optional[int] = None) -> List[TestItem]:
    """
    Compose a character test for one (script, skill) pair.

    Characters the user was never tested on come first; the rest of the test
    is filled with the weakest scores on that pair. Reading and listening
    items carry two wrong glyphs; writing items are open answers. Listening
    only uses characters that have audio, for answers and distractors alike.
    """
    if count is None:
        count = DEFAULT_TEST_COUNT
    if count <= 0:
        raise ValidationError("count must be a positive integer")
    script = validate_script(script)
    skill = validate_skill(skill)
    field = reading_field(locale)
    score_field = mastery_field(script, skill)
    audio_only = skill == "listening"

    with db.session_scope() as session:
        ranked = _rank_character_ids(session, user_id, score_field, count, audio_only)
        chosen = {c.id: c for c in session.query(Character).filter(Character.id.in_(ranked)).all()} if ranked else {}
        glyphs: List[str] = []
        if skill != "writing" and ranked:
            glyph_column = getattr(Character, script)
            pool_query = session.query(glyph_column.label("glyph"))
            if audio_only:
                pool_query = pool_query.filter(_has_audio())
            glyphs = [row.glyph for row in pool_query.all()]

    items: List[TestItem] = []
    for character_id in ranked:
        c = chosen.get(character_id)
        if c is None:
            continue
        glyph = getattr(c, script)
        if skill == "writing":
            items.append(WritingTestItem(id=c.id, character=glyph, correct_reading=getattr(c, field)))
        elif skill == "reading":
            items.append(ReadingTestItem(id=c.id, reading=getattr(c, field), correct_char=glyph,
                                         wrong_options=_distractors(glyph, glyphs)))
        else:
            items.append(ListeningTestItem(id=c.id, correct_char=glyph, audio_url=c.audio or "",
                                           wrong_options=_distractors(glyph, glyphs)))
    logger.debug("Built %s %s test with %d items for user %s", script, skill, len(items), user_id)
    return items
