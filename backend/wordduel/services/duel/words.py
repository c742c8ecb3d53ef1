"""Word engine: per-letter feedback for a guess against a secret word."""

from collections import Counter
from enum import Enum
from typing import Callable, Iterable, List, Optional

from .errors import ValidationError

WORD_LENGTH = 5


class LetterFeedback(str, Enum):
    CORRECT = 'correct'
    PRESENT = 'present'
    ABSENT = 'absent'


def normalize_word(word) -> str:
    """Lower-case and length-check a word; raise ValidationError otherwise."""
    if not isinstance(word, str):
        raise ValidationError('Word must be a string')
    normalized = word.strip().lower()
    if len(normalized) != WORD_LENGTH:
        raise ValidationError(f'Word must be {WORD_LENGTH} letters')
    if not normalized.isalpha() or not normalized.isascii():
        raise ValidationError('Word must contain only letters a-z')
    return normalized


def evaluate(guess: str, secret: str) -> List[LetterFeedback]:
    """Compute feedback for ``guess`` against ``secret``.

    Two passes over a remaining-letter multiset built from the secret:
    exact matches first, then present letters while the count lasts. This
    keeps repeated letters in the guess from being credited more often than
    they occur in the secret.
    """
    guess = guess.lower()
    secret = secret.lower()
    if len(guess) != WORD_LENGTH or len(secret) != WORD_LENGTH:
        raise ValidationError(
            f'Invalid word length: guess={len(guess)}, secret={len(secret)}'
        )

    feedback = [LetterFeedback.ABSENT] * WORD_LENGTH
    remaining = Counter(secret)

    for i in range(WORD_LENGTH):
        if guess[i] == secret[i]:
            feedback[i] = LetterFeedback.CORRECT
            remaining[guess[i]] -= 1

    for i in range(WORD_LENGTH):
        if feedback[i] is LetterFeedback.CORRECT:
            continue
        if remaining[guess[i]] > 0:
            feedback[i] = LetterFeedback.PRESENT
            remaining[guess[i]] -= 1

    return feedback


def is_solved(feedback: Iterable[LetterFeedback]) -> bool:
    return all(f is LetterFeedback.CORRECT for f in feedback)


def accept_any_word(word: str) -> bool:
    """Default dictionary predicate: any alphabetic 5-letter word."""
    return len(word) == WORD_LENGTH and word.isalpha()


def load_word_list(path: Optional[str]) -> Callable[[str], bool]:
    """Build an ``is_valid_word`` predicate from a newline-separated file.

    Falls back to ``accept_any_word`` when no path is configured.
    """
    if not path:
        return accept_any_word
    with open(path, encoding='utf-8') as fh:
        words = frozenset(
            line.strip().lower() for line in fh
            if len(line.strip()) == WORD_LENGTH
        )

    def is_valid_word(word: str) -> bool:
        return word.lower() in words

    return is_valid_word
