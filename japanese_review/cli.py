import logging
import os
from typing import Tuple

import click

from . import characters, db, results, vocabulary
from .errors import ReviewEngineError


@click.group()
@click.option("--debug/--no-debug", default=db.DEBUG_MODE, help="Verbose logging")
def cli(debug: bool) -> None:
    """Maintenance commands for the Japanese review engine."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command("init-db")
def init_db() -> None:
    """Create all tables."""
    db.init_db()
    click.echo("Database initialized.")


@cli.command("drop-marks")
@click.argument("user_ids", nargs=-1, type=int, required=True)
def drop_marks(user_ids: Tuple[int, ...]) -> None:
    """Lower every mastery score of each USER_ID by one decay step."""
    for user_id in user_ids:
        try:
            touched = results.drop_marks(user_id)
        except ReviewEngineError as exc:
            raise click.ClickException(f"user {user_id}: {exc}")
        click.echo(f"User {user_id}: {touched} characters decayed.")


@cli.command("history")
@click.argument("user_id", type=int)
def history(user_id: int) -> None:
    """Show the mastery scores of USER_ID."""
    rows = characters.get_user_history(user_id)
    if not rows:
        click.echo(f"No history for user {user_id}.")
        return
    click.echo("char  hr-read hr-write hr-listen kt-read kt-write kt-listen")
    for row in rows:
        click.echo(
            f"{row.character_hiragana}/{row.character_katakana}  "
            f"{row.hiragana_reading_result:7.2f} {row.hiragana_writing_result:8.2f} "
            f"{row.hiragana_listening_result:9.2f} {row.katakana_reading_result:7.2f} "
            f"{row.katakana_writing_result:8.2f} {row.katakana_listening_result:9.2f}"
        )


@cli.command("due")
@click.argument("user_id", type=int)
@click.option("--limit", default=40, show_default=True, help="Maximum number of ids")
def due(user_id: int, limit: int) -> None:
    """List word ids due for USER_ID, most overdue first."""
    try:
        word_ids = vocabulary.get_due_word_ids(user_id, limit)
    except ReviewEngineError as exc:
        raise click.ClickException(str(exc))
    click.echo(f"{len(word_ids)} words due for user {user_id}.")
    for word_id in word_ids:
        click.echo(str(word_id))


@cli.command("import-characters")
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
def import_characters(csv_path: str) -> None:
    """Load kana characters from CSV_PATH."""
    db.init_db()
    count = db.import_characters_csv(csv_path)
    click.echo(f"Imported {count} characters from {os.path.basename(csv_path)}.")


@cli.command("import-words")
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
def import_words(csv_path: str) -> None:
    """Load dictionary words from CSV_PATH."""
    db.init_db()
    count = db.import_words_csv(csv_path)
    click.echo(f"Imported {count} words from {os.path.basename(csv_path)}.")


if __name__ == "__main__":
    cli()
