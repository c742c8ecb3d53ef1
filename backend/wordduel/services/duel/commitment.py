"""Guess commitments for commit/reveal.

A client may commit ``sha256("<guess>:<salt>")`` before revealing, so the
server can prove the revealed guess was fixed at commit time.
"""

import hashlib
import hmac


def make_commitment(guess: str, salt: str) -> str:
    payload = f"{guess.strip().lower()}:{salt}".encode('utf-8')
    return hashlib.sha256(payload).hexdigest()


def verify_commitment(guess: str, salt: str, commitment: str) -> bool:
    expected = make_commitment(guess, salt)
    return hmac.compare_digest(expected, commitment.strip().lower())
