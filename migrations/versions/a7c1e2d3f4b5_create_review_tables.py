"""create words, characters and per-user review tables

Revision ID: a7c1e2d3f4b5
Revises:
Create Date: 2026-10-16 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a7c1e2d3f4b5'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create catalog tables and the two composite-key history tables."""
    op.create_table('words',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('word', sa.String(length=40), nullable=False),
        sa.Column('phonetic_clues', sa.String(length=60), nullable=False),
        sa.Column('russian_translation', sa.String(length=60), nullable=False),
        sa.Column('english_translation', sa.String(length=60), nullable=False),
        sa.Column('german_translation', sa.String(length=60), nullable=False),
        sa.Column('example', sa.String(length=255), nullable=False),
        sa.Column('example_russian_translation', sa.String(length=255), nullable=False),
        sa.Column('example_english_translation', sa.String(length=255), nullable=False),
        sa.Column('example_german_translation', sa.String(length=255), nullable=False),
        sa.Column('easy_period', sa.Integer(), nullable=False),
        sa.Column('normal_period', sa.Integer(), nullable=False),
        sa.Column('hard_period', sa.Integer(), nullable=False),
        sa.Column('extra_hard_period', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_words_word', 'words', ['word'])

    op.create_table('dictionary_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('word_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('next_appearance', sa.Date(), nullable=False),
        sa.ForeignKeyConstraint(['word_id'], ['words.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'word_id', name='unique_user_word')
    )
    op.create_index('ix_dictionary_history_user_id', 'dictionary_history', ['user_id'])
    op.create_index('idx_dictionary_history_next_appearance', 'dictionary_history',
                    ['user_id', 'next_appearance'])

    op.create_table('characters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('consonant', sa.String(length=1), nullable=False),
        sa.Column('vowel', sa.String(length=1), nullable=False),
        sa.Column('english_reading', sa.String(length=3), nullable=False),
        sa.Column('russian_reading', sa.String(length=3), nullable=False),
        sa.Column('katakana', sa.String(length=1), nullable=False),
        sa.Column('hiragana', sa.String(length=1), nullable=False),
        sa.Column('audio', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_characters_consonant', 'characters', ['consonant'])
    op.create_index('ix_characters_vowel', 'characters', ['vowel'])

    op.create_table('character_learn_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('character_id', sa.Integer(), nullable=False),
        sa.Column('hiragana_reading_result', sa.Float(), nullable=False, server_default='0'),
        sa.Column('hiragana_writing_result', sa.Float(), nullable=False, server_default='0'),
        sa.Column('hiragana_listening_result', sa.Float(), nullable=False, server_default='0'),
        sa.Column('katakana_reading_result', sa.Float(), nullable=False, server_default='0'),
        sa.Column('katakana_writing_result', sa.Float(), nullable=False, server_default='0'),
        sa.Column('katakana_listening_result', sa.Float(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['character_id'], ['characters.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'character_id', name='unique_user_character')
    )
    op.create_index('ix_character_learn_history_user_id', 'character_learn_history', ['user_id'])
    op.create_index('ix_character_learn_history_character_id', 'character_learn_history', ['character_id'])


def downgrade() -> None:
    """Drop all review tables."""
    op.drop_table('character_learn_history')
    op.drop_table('characters')
    op.drop_table('dictionary_history')
    op.drop_table('words')
