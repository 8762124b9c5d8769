"""Question model and answer scoring.

Questions arrive from the quiz collaborator as loose JSON. They are parsed
once, when the quiz is loaded, into :class:`Question` objects whose correct
answer is either a :class:`SingleAnswer` or a :class:`MultiAnswer`, so the
scorer never has to guess what shape ``correctAnswer`` has.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, List, NamedTuple, Optional, Union

from livequiz.errors import ValidationError


DEFAULT_BASE_POINTS = 1000
DEFAULT_TIME_LIMIT_SEC = 20
OPTION_LETTERS = 'ABCDEFGH'


class QuestionKind(str, Enum):
    SINGLE_CHOICE = 'single-choice'
    MULTIPLE_CHOICE = 'multiple-choice'
    TRUE_FALSE = 'true-false'


_KIND_ALIASES = {
    'single choice': QuestionKind.SINGLE_CHOICE,
    'single-choice': QuestionKind.SINGLE_CHOICE,
    'single_choice': QuestionKind.SINGLE_CHOICE,
    'multiple choice': QuestionKind.MULTIPLE_CHOICE,
    'multiple-choice': QuestionKind.MULTIPLE_CHOICE,
    'multiple_choice': QuestionKind.MULTIPLE_CHOICE,
    'true/false': QuestionKind.TRUE_FALSE,
    'true-false': QuestionKind.TRUE_FALSE,
    'true_false': QuestionKind.TRUE_FALSE,
}


@dataclass(frozen=True)
class SingleAnswer:
    index: int

    def indexes(self) -> List[int]:
        return [self.index]


@dataclass(frozen=True)
class MultiAnswer:
    indexes_set: FrozenSet[int] = field(default_factory=frozenset)

    def indexes(self) -> List[int]:
        return sorted(self.indexes_set)


CorrectAnswer = Union[SingleAnswer, MultiAnswer]


@dataclass(frozen=True)
class Question:
    kind: QuestionKind
    title: str
    options: List[str]
    correct: CorrectAnswer
    time_limit_seconds: float = DEFAULT_TIME_LIMIT_SEC
    base_points: int = DEFAULT_BASE_POINTS

    @classmethod
    def from_dict(cls, raw: dict) -> 'Question':
        """Build a question from the quiz service representation."""
        if not isinstance(raw, dict):
            raise ValidationError('Question must be an object')
        kind_raw = str(raw.get('type') or raw.get('kind') or 'single choice').strip().lower()
        kind = _KIND_ALIASES.get(kind_raw)
        if kind is None:
            raise ValidationError(f'Unknown question type: {kind_raw}')
        options = [str(o) for o in (raw.get('options') or [])]
        correct_raw = raw.get('correctAnswer', raw.get('correct_answer'))
        if kind == QuestionKind.MULTIPLE_CHOICE:
            values = correct_raw if isinstance(correct_raw, (list, tuple, set)) else [correct_raw]
            correct = MultiAnswer(frozenset(_to_index(v) for v in values))
        else:
            if isinstance(correct_raw, (list, tuple)) and len(correct_raw) == 1:
                correct_raw = correct_raw[0]
            correct = SingleAnswer(_to_index(correct_raw))
        for idx in correct.indexes():
            if options and not 0 <= idx < len(options):
                raise ValidationError(f'Correct answer index {idx} out of range')
        time_limit = raw.get('timeLimit', raw.get('time_limit_seconds'))
        base_points = raw.get('points', raw.get('base_points'))
        return cls(
            kind=kind,
            title=str(raw.get('title') or raw.get('text') or ''),
            options=options,
            correct=correct,
            time_limit_seconds=float(time_limit) if time_limit else DEFAULT_TIME_LIMIT_SEC,
            base_points=int(base_points) if base_points else DEFAULT_BASE_POINTS,
        )

    def correct_text(self) -> str:
        return ', '.join(self.options[i] for i in self.correct.indexes() if 0 <= i < len(self.options))

    def to_public_dict(self) -> dict:
        """Question payload for players: everything except the answer."""
        return {
            'kind': self.kind.value,
            'title': self.title,
            'options': list(self.options),
            'timeLimitSeconds': self.time_limit_seconds,
            'basePoints': self.base_points,
        }


class Evaluation(NamedTuple):
    is_correct: bool
    points: int


def _to_index(value) -> int:
    if isinstance(value, bool):
        raise ValidationError('Answer index must be an integer')
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        v = value.strip().upper()
        if v.isdigit():
            return int(v)
        if len(v) == 1 and v in OPTION_LETTERS:
            return OPTION_LETTERS.index(v)
    raise ValidationError(f'Invalid answer index: {value!r}')


def normalize_answer(submitted) -> Optional[Union[int, List[int]]]:
    """Normalize a submitted answer to an index, a sorted index list, or None."""
    if submitted is None:
        return None
    if isinstance(submitted, (list, tuple, set, frozenset)):
        return sorted({_to_index(v) for v in submitted})
    return _to_index(submitted)


def is_correct(question: Question, submitted) -> bool:
    answer = normalize_answer(submitted)
    if answer is None:
        return False
    if isinstance(question.correct, MultiAnswer):
        chosen = set(answer) if isinstance(answer, list) else {answer}
        return chosen == set(question.correct.indexes_set)
    if isinstance(answer, list):
        if len(answer) != 1:
            return False
        answer = answer[0]
    return answer == question.correct.index


def evaluate(question: Question, submitted, elapsed_seconds: float) -> Evaluation:
    """Score one submission.

    Correct answers earn ``base_points`` plus a time bonus of up to half the
    base, decaying linearly to zero at the time limit. Anything else earns 0.
    """
    if not is_correct(question, submitted):
        return Evaluation(False, 0)
    base = question.base_points or DEFAULT_BASE_POINTS
    limit = question.time_limit_seconds or DEFAULT_TIME_LIMIT_SEC
    elapsed = max(0.0, float(elapsed_seconds or 0))
    time_bonus = math.floor(base * 0.5 * max(0.0, 1 - elapsed / limit))
    return Evaluation(True, base + time_bonus)
