"""Puzzle variants and their answer checks.

Catalog rows carry different fields per type (``options`` for multiple
choice, ``emojis`` or ``target_text`` for free text). Each variant decides
correctness for its own type; ``puzzle_from_record`` picks the variant.
"""
from typing import Optional

from playrooms.models import Puzzle


def normalize_answer(value) -> str:
    if value is None:
        return ''
    return str(value).strip().lower()


class BasePuzzle:
    kind = 'open'

    def __init__(self, record: Puzzle):
        self.record = record
        self.challenge_id = record.challenge_id
        self.correct_answer = record.correct_answer or ''
        self.max_score = int(record.max_score or 0)
        self.time_limit = int(record.time_limit or 0)

    def is_correct(self, answer, time_spent: Optional[float]) -> bool:
        raise NotImplementedError


class TextPuzzle(BasePuzzle):
    """Typing and emoji puzzles: exact match ignoring case and outer whitespace."""
    kind = 'text'

    def is_correct(self, answer, time_spent):
        return normalize_answer(answer) == normalize_answer(self.correct_answer)


class ChoicePuzzle(TextPuzzle):
    kind = 'mcq'

    @property
    def options(self):
        return self.record.option_list or []


class ReactionPuzzle(BasePuzzle):
    """Any recorded reaction time counts; speed is rewarded by the point formula."""
    kind = 'reaction'

    def is_correct(self, answer, time_spent):
        return time_spent is not None and time_spent >= 0


class OpenPuzzle(BasePuzzle):
    def is_correct(self, answer, time_spent):
        return normalize_answer(answer) != ''


_VARIANTS = {
    'mcq': ChoicePuzzle,
    'typing': TextPuzzle,
    'emoji': TextPuzzle,
    'reaction': ReactionPuzzle,
}


def puzzle_from_record(record: Puzzle) -> BasePuzzle:
    return _VARIANTS.get((record.type or '').lower(), OpenPuzzle)(record)
