"""Exception hierarchy for duel transitions.

Every rejection leaves duel state unchanged. The session reports
``ValidationError`` and ``ProtocolViolation`` to the offending connection
only; ``InternalInconsistency`` is additionally logged at ERROR level.
"""


class DuelError(Exception):
    """Base exception for all duel rejections."""

    kind = 'duel_error'

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self):
        return {'message': self.message}


class ValidationError(DuelError):
    """Malformed input: wrong length, not a word, missing payload fields."""

    kind = 'validation'


class ProtocolViolation(DuelError):
    """A well-formed message that is not allowed in the current state."""

    kind = 'protocol'


class InternalInconsistency(DuelError):
    """A transition would break a duel invariant; refused outright."""

    kind = 'internal'
