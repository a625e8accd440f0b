import pytest
from sqlalchemy import create_engine
from sqlalchemy.dialects import mysql

from japanese_review import characters, db
from japanese_review.db import Character, CharacterMastery, get_session
from japanese_review.errors import NotFoundError, StorageError, ValidationError
from japanese_review.structured import ListeningTestItem, MasteryScores, ReadingTestItem, WritingTestItem

KANA = [
    # consonant, vowel, english, russian, hiragana, katakana, audio
    ("", "a", "a", "а", "あ", "ア", "https://audio.test/a.mp3"),
    ("", "i", "i", "и", "い", "イ", None),
    ("", "u", "u", "у", "う", "ウ", "https://audio.test/u.mp3"),
    ("k", "a", "ka", "ка", "か", "カ", "https://audio.test/ka.mp3"),
    ("k", "i", "ki", "ки", "き", "キ", ""),
    ("k", "u", "ku", "ку", "く", "ク", "https://audio.test/ku.mp3"),
    ("s", "a", "sa", "са", "さ", "サ", None),
    ("s", "i", "shi", "си", "し", "シ", "https://audio.test/shi.mp3"),
]


@pytest.fixture(autouse=True)
def setup_db(tmp_path, monkeypatch):
    # Use a temporary SQLite DB, and rebind engine/session to it
    test_db = str(tmp_path / "test_characters.db")
    monkeypatch.setenv("JP_REVIEW_DB", test_db)
    db.engine = create_engine(f"sqlite:///{test_db}")
    db.SessionLocal = db.sessionmaker(bind=db.engine, expire_on_commit=False)
    db.init_db()
    yield


def make_kana(session, rows=KANA):
    created = []
    for consonant, vowel, english, russian, hiragana, katakana, audio in rows:
        c = Character(consonant=consonant, vowel=vowel, english_reading=english,
                      russian_reading=russian, hiragana=hiragana, katakana=katakana, audio=audio)
        session.add(c)
        created.append(c)
    session.commit()
    return [c.id for c in created]


def set_scores(session, user_id, character_id, **scores):
    session.add(CharacterMastery(user_id=user_id, character_id=character_id, **scores))
    session.commit()


def stored(user_id, character_id):
    session = get_session()
    row = session.query(CharacterMastery).filter_by(user_id=user_id, character_id=character_id).one_or_none()
    session.close()
    return row


# ── Catalog ───────────────────────────────────────────────────────

def test_list_characters_uses_locale_reading():
    session = get_session()
    ids = make_kana(session)
    session.close()

    items = characters.list_characters("katakana", "ru")
    assert [item.id for item in items] == ids
    assert items[3].character == "カ"
    assert items[3].reading == "ка"
    # German learners get the English reading
    assert characters.list_characters("hiragana", "de")[7].reading == "shi"


def test_characters_by_group():
    session = get_session()
    make_kana(session)
    session.close()

    by_consonant = characters.characters_by_group("hiragana", "en", "k")
    assert [item.character for item in by_consonant] == ["か", "き", "く"]
    assert all(item.consonant == "k" and item.vowel is None for item in by_consonant)

    by_vowel = characters.characters_by_group("hiragana", "en", "i")
    assert [item.reading for item in by_vowel] == ["i", "ki", "shi"]
    assert all(item.vowel == "i" and item.consonant is None for item in by_vowel)

    with pytest.raises(ValidationError):
        characters.characters_by_group("hiragana", "en", "")


def test_get_character():
    session = get_session()
    ids = make_kana(session)
    session.close()

    detail = characters.get_character(ids[6], "en")
    assert (detail.hiragana, detail.katakana, detail.reading) == ("さ", "サ", "sa")
    with pytest.raises(NotFoundError):
        characters.get_character(999, "en")
    with pytest.raises(ValidationError):
        characters.get_character(0, "en")
    with pytest.raises(ValidationError):
        characters.get_character(ids[0], "fr")


@pytest.mark.parametrize("script", ["kanji", "", None, 3])
def test_invalid_script_rejected(script):
    with pytest.raises(ValidationError):
        characters.list_characters(script, "en")


def test_script_and_locale_are_case_insensitive():
    session = get_session()
    make_kana(session)
    session.close()

    items = characters.list_characters("Hiragana", "EN")
    assert items[0].character == "あ"
    assert items[0].reading == "a"
    assert len(characters.build_test(1, "KATAKANA", "Writing", "Ru", count=2)) == 2


# ── Mastery store ─────────────────────────────────────────────────

def test_get_scores_omits_never_tested():
    session = get_session()
    ids = make_kana(session)
    set_scores(session, 1, ids[0], hiragana_reading_result=0.4)
    session.close()

    scores = characters.get_scores(1, ids[:3])
    assert set(scores) == {ids[0]}
    assert scores[ids[0]].hiragana_reading_result == pytest.approx(0.4)
    assert scores[ids[0]].katakana_listening_result == 0.0
    assert characters.get_scores(1, []) == {}


def test_upsert_creates_then_merges_single_row():
    session = get_session()
    ids = make_kana(session)
    session.close()

    characters.upsert_mastery([MasteryScores(1, ids[0], hiragana_reading_result=0.5)])
    characters.upsert_mastery([MasteryScores(1, ids[0], hiragana_reading_result=0.5, katakana_writing_result=1.0)])

    session = get_session()
    assert session.query(CharacterMastery).filter_by(user_id=1, character_id=ids[0]).count() == 1
    session.close()
    row = stored(1, ids[0])
    assert row.hiragana_reading_result == pytest.approx(0.5)
    assert row.katakana_writing_result == pytest.approx(1.0)


def test_upsert_clamps_scores():
    session = get_session()
    ids = make_kana(session)
    session.close()

    characters.upsert_mastery([MasteryScores(1, ids[0], hiragana_reading_result=1.4, katakana_reading_result=-0.3)])

    row = stored(1, ids[0])
    assert row.hiragana_reading_result == 1.0
    assert row.katakana_reading_result == 0.0


def test_upsert_duplicate_in_batch_keeps_last():
    session = get_session()
    ids = make_kana(session)
    session.close()

    characters.upsert_mastery([
        MasteryScores(1, ids[0], hiragana_writing_result=0.2),
        MasteryScores(1, ids[0], hiragana_writing_result=0.7),
    ])
    assert stored(1, ids[0]).hiragana_writing_result == pytest.approx(0.7)


def test_upsert_empty_batch_rejected():
    with pytest.raises(ValidationError):
        characters.upsert_mastery([])


def test_upsert_failure_writes_nothing():
    session = get_session()
    ids = make_kana(session)
    set_scores(session, 1, ids[1], hiragana_reading_result=0.3)
    session.close()

    with pytest.raises(StorageError):
        characters.upsert_mastery([
            MasteryScores(1, ids[0], hiragana_reading_result=0.8),
            MasteryScores(1, ids[1], hiragana_reading_result=0.9),
            MasteryScores(1, None, hiragana_reading_result=0.5),
        ])

    assert stored(1, ids[0]) is None
    assert stored(1, ids[1]).hiragana_reading_result == pytest.approx(0.3)


def test_upsert_only_touches_its_own_user():
    session = get_session()
    ids = make_kana(session)
    set_scores(session, 2, ids[0], hiragana_reading_result=0.6, katakana_writing_result=0.2)
    session.close()

    characters.upsert_mastery([MasteryScores(1, ids[0], hiragana_reading_result=1.0, katakana_writing_result=1.0)])

    other = stored(2, ids[0])
    assert other.hiragana_reading_result == pytest.approx(0.6)
    assert other.katakana_writing_result == pytest.approx(0.2)
    assert stored(1, ids[0]).hiragana_reading_result == 1.0


def test_upsert_update_fields_limits_merge():
    session = get_session()
    ids = make_kana(session)
    set_scores(session, 1, ids[0], hiragana_reading_result=0.2, katakana_writing_result=0.7)
    session.close()

    characters.upsert_mastery(
        [MasteryScores(1, ids[0], hiragana_reading_result=1.0),
         MasteryScores(1, ids[1], hiragana_reading_result=1.0, katakana_listening_result=0.4)],
        update_fields=("hiragana_reading_result",),
    )

    existing = stored(1, ids[0])
    assert existing.hiragana_reading_result == 1.0
    assert existing.katakana_writing_result == pytest.approx(0.7)
    # new rows are inserted whole
    assert stored(1, ids[1]).katakana_listening_result == pytest.approx(0.4)

    with pytest.raises(ValidationError):
        characters.upsert_mastery([MasteryScores(1, ids[0])], update_fields=("score",))


def test_user_history_ordered_by_character():
    session = get_session()
    ids = make_kana(session)
    set_scores(session, 1, ids[5], katakana_reading_result=0.3)
    set_scores(session, 1, ids[1], hiragana_reading_result=0.8)
    set_scores(session, 2, ids[2], hiragana_reading_result=1.0)
    session.close()

    history = characters.get_user_history(1)
    assert [row.character_id for row in history] == [ids[1], ids[5]]
    assert (history[0].character_hiragana, history[0].character_katakana) == ("い", "イ")
    assert history[1].katakana_reading_result == pytest.approx(0.3)
    assert characters.get_user_history(3) == []


def test_decay_lowers_every_score_with_zero_floor():
    session = get_session()
    ids = make_kana(session)
    set_scores(session, 1, ids[0], hiragana_reading_result=0.5, katakana_listening_result=0.005,
               hiragana_writing_result=1.0)
    set_scores(session, 2, ids[0], hiragana_reading_result=0.5)
    session.close()

    assert characters.decay(1) == 1

    row = stored(1, ids[0])
    assert row.hiragana_reading_result == pytest.approx(0.49)
    assert row.hiragana_writing_result == pytest.approx(0.99)
    assert row.katakana_listening_result == 0.0
    assert row.katakana_reading_result == 0.0
    # other users are untouched
    assert stored(2, ids[0]).hiragana_reading_result == pytest.approx(0.5)


def test_decay_without_rows_is_not_an_error():
    assert characters.decay(77) == 0


def test_mastery_totals():
    session = get_session()
    ids = make_kana(session)
    set_scores(session, 1, ids[0], hiragana_reading_result=1.0, katakana_writing_result=0.5)
    set_scores(session, 1, ids[1], hiragana_listening_result=0.25)
    session.close()

    total_characters, score_sum = characters.mastery_totals(1)
    assert total_characters == len(KANA)
    assert score_sum == pytest.approx(1.75)
    assert characters.mastery_totals(2) == (len(KANA), 0.0)


def test_store_failure_raises_storage_error():
    db.Base.metadata.drop_all(bind=db.engine)
    with pytest.raises(StorageError):
        characters.get_user_history(1)


# ── Test composition ──────────────────────────────────────────────

def test_unseen_characters_come_before_weakest():
    session = get_session()
    ids = make_kana(session)
    tested = {ids[0]: 0.9, ids[1]: 0.1, ids[2]: 0.5, ids[3]: 0.7, ids[4]: 0.3, ids[5]: 0.6}
    for character_id, score in tested.items():
        set_scores(session, 1, character_id, hiragana_reading_result=score)
    session.close()
    unseen = {ids[6], ids[7]}

    items = characters.build_test(1, "hiragana", "reading", "en", count=4)
    item_ids = [item.id for item in items]
    assert set(item_ids[:2]) == unseen
    assert item_ids[2:] == [ids[1], ids[4]]


def test_weakest_ranked_on_requested_pair_only():
    session = get_session()
    ids = make_kana(session)
    for character_id in ids:
        # katakana writing is weakest for the last character, hiragana reading for the first
        set_scores(session, 1, character_id, hiragana_reading_result=0.1 if character_id == ids[0] else 0.9,
                   katakana_writing_result=0.1 if character_id == ids[-1] else 0.9)
    session.close()

    items = characters.build_test(1, "katakana", "writing", "en", count=1)
    assert [item.id for item in items] == [ids[-1]]


def test_reading_items_have_two_distinct_wrong_glyphs():
    session = get_session()
    make_kana(session)
    session.close()

    items = characters.build_test(1, "katakana", "reading", "en", count=8)
    assert len(items) == 8
    assert len({item.id for item in items}) == 8
    katakana = {row[5] for row in KANA}
    for item in items:
        assert isinstance(item, ReadingTestItem)
        assert len(item.wrong_options) == 2
        assert len(set(item.wrong_options)) == 2
        assert item.correct_char not in item.wrong_options
        assert set(item.wrong_options) <= katakana


def test_listening_uses_only_characters_with_audio():
    session = get_session()
    make_kana(session)
    session.close()
    with_audio = {row[4] for row in KANA if row[6]}

    items = characters.build_test(1, "hiragana", "listening", "en", count=10)
    assert len(items) == len(with_audio)
    for item in items:
        assert isinstance(item, ListeningTestItem)
        assert item.correct_char in with_audio
        assert item.audio_url.startswith("https://audio.test/")
        assert set(item.wrong_options) <= with_audio
        assert item.correct_char not in item.wrong_options
        assert len(item.wrong_options) == 2


def test_writing_items_carry_locale_reading():
    session = get_session()
    make_kana(session)
    session.close()
    readings = {row[4]: row[3] for row in KANA}

    items = characters.build_test(1, "hiragana", "writing", "ru", count=3)
    assert len(items) == 3
    for item in items:
        assert isinstance(item, WritingTestItem)
        assert item.correct_reading == readings[item.character]


def test_small_pool_yields_fewer_distractors():
    session = get_session()
    make_kana(session, KANA[:2])
    session.close()

    items = characters.build_test(1, "hiragana", "reading", "en")
    assert len(items) == 2
    assert all(len(item.wrong_options) == 1 for item in items)


def test_build_test_count():
    session = get_session()
    rows = [("x", "a", f"r{i}", f"р{i}", chr(0x3041 + i), chr(0x30A1 + i), None) for i in range(15)]
    make_kana(session, rows)
    session.close()

    assert len(characters.build_test(1, "hiragana", "writing", "en")) == characters.DEFAULT_TEST_COUNT
    for count in (0, -1):
        with pytest.raises(ValidationError):
            characters.build_test(1, "hiragana", "writing", "en", count=count)


@pytest.mark.parametrize("script,skill,locale", [
    ("kanji", "reading", "en"), ("hiragana", "speaking", "en"), ("hiragana", "reading", "jp"),
])
def test_build_test_validation(script, skill, locale):
    with pytest.raises(ValidationError):
        characters.build_test(1, script, skill, locale)


def test_empty_catalog_gives_empty_test():
    assert characters.build_test(1, "hiragana", "reading", "en") == []


def test_random_order_matches_dialect():
    session = get_session()
    assert str(db.random_order(session).compile(dialect=db.engine.dialect)) == "random()"
    session.close()

    class MySQLBind:
        dialect = mysql.dialect()

    class MySQLSession:
        def get_bind(self):
            return MySQLBind()

    assert str(db.random_order(MySQLSession()).compile(dialect=mysql.dialect())) == "rand()"
