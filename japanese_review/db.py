from __future__ import annotations
from sqlalchemy import create_engine, func, Date, Integer, Float as SAFloat, String, ForeignKey, UniqueConstraint, Index
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session, Mapped, mapped_column
from contextlib import contextmanager
import csv
import datetime
import logging
import os
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .errors import StorageError

logger = logging.getLogger(__name__)

DEBUG_MODE = os.getenv("DEBUG", "0") == "1"


class Base(DeclarativeBase):
    pass


DB_PATH: str = os.environ.get("JP_REVIEW_DB", "japanese_review.db")
DATABASE_URL: str = os.environ.get("JP_REVIEW_DATABASE_URL", f"sqlite:///{DB_PATH}")
engine = create_engine(DATABASE_URL, echo=DEBUG_MODE)
# Prevent attribute expiration on commit so returned objects remain accessible
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


SCRIPTS = ("hiragana", "katakana")
SKILLS = ("reading", "writing", "listening")


class Word(Base):
    __tablename__ = "words"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    word: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    phonetic_clues: Mapped[str] = mapped_column(String(60), nullable=False)  # hiragana reading
    russian_translation: Mapped[str] = mapped_column(String(60), nullable=False)
    english_translation: Mapped[str] = mapped_column(String(60), nullable=False)
    german_translation: Mapped[str] = mapped_column(String(60), nullable=False)
    example: Mapped[str] = mapped_column(String(255), nullable=False)  # Japanese sentence
    example_russian_translation: Mapped[str] = mapped_column(String(255), nullable=False)
    example_english_translation: Mapped[str] = mapped_column(String(255), nullable=False)
    example_german_translation: Mapped[str] = mapped_column(String(255), nullable=False)
    # Difficulty tiers, in days
    easy_period: Mapped[int] = mapped_column(Integer, nullable=False)
    normal_period: Mapped[int] = mapped_column(Integer, nullable=False)
    hard_period: Mapped[int] = mapped_column(Integer, nullable=False)
    extra_hard_period: Mapped[int] = mapped_column(Integer, nullable=False)


class WordReview(Base):
    """When a word becomes due again for one user."""
    __tablename__ = "dictionary_history"
    __table_args__ = (
        UniqueConstraint("user_id", "word_id", name="unique_user_word"),
        Index("idx_dictionary_history_next_appearance", "user_id", "next_appearance"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    word_id: Mapped[int] = mapped_column(Integer, ForeignKey("words.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    next_appearance: Mapped[datetime.date] = mapped_column(Date, nullable=False)


class Character(Base):
    __tablename__ = "characters"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    consonant: Mapped[str] = mapped_column(String(1), nullable=False, index=True)
    vowel: Mapped[str] = mapped_column(String(1), nullable=False, index=True)
    english_reading: Mapped[str] = mapped_column(String(3), nullable=False)
    russian_reading: Mapped[str] = mapped_column(String(3), nullable=False)
    katakana: Mapped[str] = mapped_column(String(1), nullable=False)
    hiragana: Mapped[str] = mapped_column(String(1), nullable=False)
    audio: Mapped[Optional[str]] = mapped_column(String)  # URL of the pronunciation clip


class CharacterMastery(Base):
    """Six bounded [0, 1] scores for one (user, character) pair."""
    __tablename__ = "character_learn_history"
    __table_args__ = (
        UniqueConstraint("user_id", "character_id", name="unique_user_character"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    character_id: Mapped[int] = mapped_column(Integer, ForeignKey("characters.id", ondelete="CASCADE"), nullable=False, index=True)
    hiragana_reading_result: Mapped[float] = mapped_column(SAFloat, nullable=False, default=0.0)
    hiragana_writing_result: Mapped[float] = mapped_column(SAFloat, nullable=False, default=0.0)
    hiragana_listening_result: Mapped[float] = mapped_column(SAFloat, nullable=False, default=0.0)
    katakana_reading_result: Mapped[float] = mapped_column(SAFloat, nullable=False, default=0.0)
    katakana_writing_result: Mapped[float] = mapped_column(SAFloat, nullable=False, default=0.0)
    katakana_listening_result: Mapped[float] = mapped_column(SAFloat, nullable=False, default=0.0)


MASTERY_FIELDS: List[str] = [f"{script}_{skill}_result" for script in SCRIPTS for skill in SKILLS]


def mastery_field(script: str, skill: str) -> str:
    """Column name holding the score for one (script, skill) pair."""
    field = f"{script}_{skill}_result"
    if field not in MASTERY_FIELDS:
        raise KeyError(field)
    return field


def is_db_initialized() -> bool:
    """Check if the database is already initialized by checking if tables exist."""
    from sqlalchemy import inspect
    inspector = inspect(engine)
    table_names = inspector.get_table_names()

    required_tables = {"words", "dictionary_history", "characters", "character_learn_history"}
    return required_tables.issubset(set(table_names))


def init_db() -> None:
    """Initialize the database by creating all tables."""
    Base.metadata.create_all(bind=engine)


def get_session() -> Session:
    return SessionLocal()


@contextmanager
def session_scope() -> Iterator[Session]:
    """One unit of work: commit on success, roll back and raise StorageError on store failure."""
    session: Session = get_session()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Store operation failed")
        raise StorageError(str(exc)) from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def upsert_statement(session: Session, model: Any, rows: Sequence[Dict[str, Any]],
                     key: Sequence[str], update: Sequence[str]) -> Any:
    """Build a single multi-row INSERT ... ON CONFLICT/DUPLICATE KEY UPDATE for the bound dialect.

    Values are always bound parameters; only column names from the model are
    used to build the statement.
    """
    dialect = session.get_bind().dialect.name
    table = model.__table__
    if dialect == "sqlite":
        stmt = sqlite.insert(table).values(list(rows))
        return stmt.on_conflict_do_update(
            index_elements=list(key),
            set_={name: stmt.excluded[name] for name in update},
        )
    if dialect == "postgresql":
        pg_stmt = postgresql.insert(table).values(list(rows))
        return pg_stmt.on_conflict_do_update(
            index_elements=list(key),
            set_={name: pg_stmt.excluded[name] for name in update},
        )
    if dialect in ("mysql", "mariadb"):
        my_stmt = mysql.insert(table).values(list(rows))
        return my_stmt.on_duplicate_key_update(
            {name: my_stmt.inserted[name] for name in update}
        )
    raise StorageError(f"Upsert is not supported for dialect '{dialect}'")


def random_order(session: Session) -> Any:
    """ORDER BY term that shuffles rows on the bound dialect (RAND() on MySQL, random() elsewhere)."""
    if session.get_bind().dialect.name in ("mysql", "mariadb"):
        return func.rand()
    return func.random()


# ----------------------------------------------------------------------
# Catalog import
# ----------------------------------------------------------------------

def import_characters_csv(csv_path: str) -> int:
    """Import kana characters from CSV. Rows whose glyph pair already exists are skipped.

    Expected columns: consonant, vowel, english_reading, russian_reading,
    hiragana, katakana and an optional audio URL.
    """
    imported = 0
    with session_scope() as session, open(csv_path, "r", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        for row in reader:
            hiragana = row["hiragana"].strip()
            katakana = row["katakana"].strip()
            exists = (
                session.query(Character.id)
                .filter((Character.hiragana == hiragana) | (Character.katakana == katakana))
                .first()
            )
            if exists:
                continue
            session.add(Character(
                consonant=row.get("consonant", "").strip(),
                vowel=row.get("vowel", "").strip(),
                english_reading=row["english_reading"].strip(),
                russian_reading=row["russian_reading"].strip(),
                hiragana=hiragana,
                katakana=katakana,
                audio=(row.get("audio") or "").strip() or None,
            ))
            session.flush()
            imported += 1
    logger.info("Imported %d characters from %s", imported, csv_path)
    return imported


def import_words_csv(csv_path: str) -> int:
    """Import dictionary words from CSV. Words already present (same word and reading) are skipped."""
    imported = 0
    with session_scope() as session, open(csv_path, "r", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        for row in reader:
            word = row["word"].strip()
            clues = row["phonetic_clues"].strip()
            if session.query(Word.id).filter_by(word=word, phonetic_clues=clues).first():
                continue
            session.add(Word(
                word=word,
                phonetic_clues=clues,
                russian_translation=row["russian_translation"],
                english_translation=row["english_translation"],
                german_translation=row["german_translation"],
                example=row["example"],
                example_russian_translation=row["example_russian_translation"],
                example_english_translation=row["example_english_translation"],
                example_german_translation=row["example_german_translation"],
                easy_period=int(row["easy_period"]),
                normal_period=int(row["normal_period"]),
                hard_period=int(row["hard_period"]),
                extra_hard_period=int(row["extra_hard_period"]),
            ))
            session.flush()
            imported += 1
    logger.info("Imported %d words from %s", imported, csv_path)
    return imported
