"""
Client-side checks for a submitted round.

Run before any store call. Holes and greens in regulation are optional;
the score is required and every numeric field must be all digits.
"""
from teefeed.errors import ValidationFailed

MAX_SCORE = 999
MAX_HOLES = 18
MAX_GIR = 18


def _is_number(value: str) -> bool:
    # Empty passes here; required-ness is checked separately
    return all("0" <= ch <= "9" for ch in value)


def validate_round(title: str, score: str, holes: str = "", greens_in_regulation: str = "") -> None:
    """Raise ValidationFailed with the message shown to the golfer."""
    if not title.strip() or not score.strip():
        raise ValidationFailed("Must enter a title and score", field="title" if not title.strip() else "score")

    if not _is_number(score):
        raise ValidationFailed("Must enter a number for Score", field="score")
    if not _is_number(holes):
        raise ValidationFailed("Must enter a number for Holes", field="holes")
    if not _is_number(greens_in_regulation):
        raise ValidationFailed("Must enter a number for Greens In Regulation", field="greens_in_regulation")

    if int(score) > MAX_SCORE:
        raise ValidationFailed("Must be a reasonable number", field="score")
    if holes and int(holes) > MAX_HOLES:
        raise ValidationFailed("Must be a reasonable number", field="holes")
    if greens_in_regulation and int(greens_in_regulation) > MAX_GIR:
        raise ValidationFailed("Must be a reasonable number", field="greens_in_regulation")
