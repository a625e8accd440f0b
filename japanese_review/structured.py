from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class WordResult:
    word_id: int
    # None means "not supplied", which is rejected; 0 is a value and is out of range
    period: Optional[int] = None


@dataclass
class WordItem:
    id: int
    word: str
    phonetic_clues: str
    example: str
    translation: str
    example_translation: str
    easy_period: int
    normal_period: int
    hard_period: int
    extra_hard_period: int


@dataclass
class CharacterItem:
    id: int
    character: str
    reading: str
    consonant: Optional[str] = None
    vowel: Optional[str] = None


@dataclass
class CharacterDetail:
    id: int
    consonant: str
    vowel: str
    hiragana: str
    katakana: str
    reading: str


@dataclass
class ReadingTestItem:
    id: int
    reading: str
    correct_char: str
    wrong_options: List[str] = field(default_factory=list)


@dataclass
class WritingTestItem:
    id: int
    character: str
    correct_reading: str


@dataclass
class ListeningTestItem:
    id: int
    correct_char: str
    audio_url: str
    wrong_options: List[str] = field(default_factory=list)


@dataclass
class MasteryScores:
    user_id: int
    character_id: int
    hiragana_reading_result: float = 0.0
    hiragana_writing_result: float = 0.0
    hiragana_listening_result: float = 0.0
    katakana_reading_result: float = 0.0
    katakana_writing_result: float = 0.0
    katakana_listening_result: float = 0.0


@dataclass
class UserHistoryRow:
    character_id: int
    character_hiragana: str
    character_katakana: str
    hiragana_reading_result: float
    hiragana_writing_result: float
    hiragana_listening_result: float
    katakana_reading_result: float
    katakana_writing_result: float
    katakana_listening_result: float


@dataclass
class TestResult:
    __test__ = False  # not a pytest class

    character_id: int
    passed: Optional[bool] = None


@dataclass
class SubmitResult:
    ask_for_repeat: bool


@dataclass
class RepeatContext:
    """What a repeat policy gets to see after a submission was stored."""
    user_id: int
    repeat_flag: str
    total_characters: int
    score_sum: float

    @property
    def max_score_sum(self) -> float:
        return float(self.total_characters) * 6.0
