import copy
import random

import pytest

from wordduel.services.duel import state as duel
from wordduel.services.duel.commitment import make_commitment
from wordduel.services.duel.errors import (
    DuelError,
    InternalInconsistency,
    ProtocolViolation,
    ValidationError,
)
from wordduel.services.duel.state import Phase

T0 = 1000.0


def new_duel(max_turns=6, duration=60):
    return duel.create_duel('alice', stake='0.01', now=T0, turn_duration_secs=duration, max_turns=max_turns)


def playing(word_a='crane', word_b='trace', **kwargs):
    st = duel.join(new_duel(**kwargs), 'bob')
    st = duel.set_word(st, 'alice', word_a, now=T0)
    return duel.set_word(st, 'bob', word_b, now=T0)


def play_turn(st, guess_a, guess_b, now):
    st = duel.commit_guess(st, 'alice')
    st = duel.commit_guess(st, 'bob')
    st = duel.reveal_guess(st, 'alice', guess_a, now=now)
    return duel.reveal_guess(st, 'bob', guess_b, now=now)


def test_create_is_waiting():
    st = new_duel()
    assert st.phase is Phase.WAITING
    assert st.slot_b is None
    assert st.turn == 0
    assert st.stake == '0.01'


@pytest.mark.parametrize('player', ['alice', 'ALICE', ' Alice '])
def test_join_rejects_self_play(player):
    with pytest.raises(ProtocolViolation):
        duel.join(new_duel(), player)


def test_join_moves_to_setting_words():
    st = duel.join(new_duel(), 'Bob')
    assert st.phase is Phase.SETTING_WORDS
    assert st.slot_b.id == 'bob'


def test_join_only_while_waiting():
    st = duel.join(new_duel(), 'bob')
    with pytest.raises(ProtocolViolation):
        duel.join(st, 'carol')


def test_set_word_validation():
    st = duel.join(new_duel(), 'bob')
    with pytest.raises(ValidationError):
        duel.set_word(st, 'alice', 'cranes', now=T0)
    with pytest.raises(ValidationError):
        duel.set_word(st, 'alice', 'zzzzz', now=T0, is_valid_word=lambda w: False)
    with pytest.raises(ProtocolViolation):
        duel.set_word(st, 'carol', 'crane', now=T0)
    with pytest.raises(ProtocolViolation):
        duel.set_word(new_duel(), 'alice', 'crane', now=T0)
    assert st.slot_a.secret_word is None


def test_both_words_start_play():
    st = duel.join(new_duel(), 'bob')
    st = duel.set_word(st, 'alice', 'CRANE', now=T0)
    assert st.phase is Phase.SETTING_WORDS
    st = duel.set_word(st, 'bob', 'trace', now=T0 + 3)
    assert st.phase is Phase.PLAYING
    assert st.turn == 1
    assert st.turn_started_at == T0 + 3
    assert st.slot_a.secret_word == 'crane'


def test_secret_word_is_set_once():
    st = duel.set_word(duel.join(new_duel(), 'bob'), 'alice', 'crane', now=T0)
    before = copy.deepcopy(st)
    with pytest.raises(ProtocolViolation):
        duel.set_word(st, 'Alice', 'trace', now=T0)
    assert st == before
    assert st.slot_a.secret_word == 'crane'
    assert st.phase is Phase.SETTING_WORDS


def test_double_commit_rejected():
    st = duel.commit_guess(playing(), 'alice')
    with pytest.raises(ProtocolViolation):
        duel.commit_guess(st, 'alice')


def test_commit_requires_play():
    with pytest.raises(ProtocolViolation):
        duel.commit_guess(duel.join(new_duel(), 'bob'), 'alice')


def test_reveal_without_commit_leaves_state_untouched():
    st = playing()
    before = copy.deepcopy(st)
    with pytest.raises(ProtocolViolation):
        duel.reveal_guess(st, 'alice', 'trace', now=T0 + 1)
    assert st == before


def test_reveal_scores_against_opponent_word():
    st = duel.commit_guess(playing(), 'alice')
    st = duel.reveal_guess(st, 'alice', 'TRACE', now=T0 + 5)
    record = st.slot_a.guesses[-1]
    assert record.guess == 'trace'
    assert [f.value for f in record.feedback] == ['correct'] * 5
    assert st.slot_a.solved and st.slot_a.solved_on_turn == 1
    assert st.slot_a.revealed
    # the other player has not revealed, so the turn stays
    assert st.turn == 1


def test_double_reveal_rejected():
    st = duel.commit_guess(playing(), 'alice')
    st = duel.reveal_guess(st, 'alice', 'smile', now=T0)
    with pytest.raises(ProtocolViolation):
        duel.reveal_guess(st, 'alice', 'smile', now=T0)


def test_invalid_guess_rejected():
    st = duel.commit_guess(playing(), 'alice')
    with pytest.raises(ValidationError):
        duel.reveal_guess(st, 'alice', 'abc', now=T0)
    with pytest.raises(ValidationError):
        duel.reveal_guess(st, 'alice', 'qqqqq', now=T0, is_valid_word=lambda w: False)


def test_both_reveals_advance_turn_and_reset_flags():
    st = play_turn(playing(), 'smile', 'smile', now=T0 + 30)
    assert st.phase is Phase.PLAYING
    assert st.turn == 2
    assert st.turn_started_at == T0 + 30
    for slot in st.slots:
        assert not slot.committed and not slot.revealed
        assert len(slot.guesses) == 1


def test_fewer_turns_wins_when_both_solve():
    st = play_turn(playing(), 'trace', 'smile', now=T0 + 10)
    # alice solved on turn 1 but bob may still catch up before the limit
    assert st.phase is Phase.PLAYING and st.turn == 2
    st = duel.commit_guess(st, 'alice')
    st = duel.commit_guess(st, 'bob')
    st = duel.reveal_guess(st, 'alice', 'smile', now=T0 + 20)
    st = duel.reveal_guess(st, 'bob', 'crane', now=T0 + 20)
    assert st.phase is Phase.FINISHED
    assert st.winner == 'alice'
    assert st.end_reason == duel.REASON_SOLVED


def test_same_turn_solve_is_draw():
    st = play_turn(playing(), 'trace', 'crane', now=T0 + 10)
    assert st.phase is Phase.FINISHED
    assert st.winner is None
    assert st.end_reason == duel.REASON_DRAW


def test_single_solver_wins_at_turn_limit():
    st = play_turn(playing(max_turns=2), 'smile', 'smile', now=T0 + 10)
    st = play_turn(st, 'smile', 'crane', now=T0 + 20)
    assert st.phase is Phase.FINISHED
    assert st.winner == 'bob'
    assert st.end_reason == duel.REASON_SOLVED


def test_unsolved_duel_is_draw_after_max_turns():
    st = playing()
    for turn in range(1, 7):
        assert st.turn == turn
        st = play_turn(st, 'smile', 'smile', now=T0 + turn * 10)
    assert st.phase is Phase.FINISHED
    assert st.turn == 6
    assert st.winner is None
    assert st.end_reason == duel.REASON_DRAW
    assert all(len(s.guesses) == 6 for s in st.slots)


def test_timeout_before_deadline_is_noop():
    st = playing()
    assert duel.timeout(st, now=T0 + 59) is st


def test_timeout_forfeits_idle_player():
    st = duel.commit_guess(playing(), 'alice')
    st = duel.reveal_guess(st, 'alice', 'smile', now=T0 + 5)
    st = duel.timeout(st, now=T0 + 60)
    assert st.phase is Phase.FINISHED
    assert st.winner == 'alice'
    assert st.end_reason == duel.REASON_TIMEOUT


def test_commit_without_reveal_is_not_a_completed_turn():
    st = duel.commit_guess(playing(), 'alice')
    st = duel.commit_guess(st, 'bob')
    st = duel.reveal_guess(st, 'bob', 'smile', now=T0 + 5)
    st = duel.timeout(st, now=T0 + 61)
    assert st.winner == 'bob'


def test_timeout_with_both_idle_is_draw():
    st = duel.timeout(playing(), now=T0 + 60)
    assert st.phase is Phase.FINISHED
    assert st.winner is None
    assert st.end_reason == duel.REASON_TIMEOUT


def test_timeout_after_both_completed_is_noop():
    st = playing()
    for slot in st.slots:
        slot.committed = True
        slot.revealed = True
    assert duel.timeout(st, now=T0 + 100) is st


def test_timeout_outside_play_rejected():
    with pytest.raises(ProtocolViolation):
        duel.timeout(duel.join(new_duel(), 'bob'), now=T0 + 1000)


def test_advance_turn_without_second_player_is_inconsistent():
    st = new_duel()
    st.phase = Phase.PLAYING
    with pytest.raises(InternalInconsistency):
        duel.advance_turn(st, now=T0)


def test_commitment_must_match_reveal():
    salt = 'n0nce'
    st = duel.commit_guess(playing(), 'alice', make_commitment('smile', salt))
    with pytest.raises(ProtocolViolation):
        duel.reveal_guess(st, 'alice', 'smile', now=T0)
    with pytest.raises(ProtocolViolation):
        duel.reveal_guess(st, 'alice', 'slate', now=T0, salt=salt)
    st = duel.reveal_guess(st, 'alice', 'smile', now=T0, salt=salt)
    assert st.slot_a.revealed


def test_commitments_reset_each_turn():
    st = duel.commit_guess(playing(), 'alice', make_commitment('smile', 'x'))
    st = duel.commit_guess(st, 'bob')
    st = duel.reveal_guess(st, 'alice', 'smile', now=T0, salt='x')
    st = duel.reveal_guess(st, 'bob', 'smile', now=T0)
    assert st.turn == 2
    assert st.slot_a.commitment is None


def test_public_view_redacts_secret_words():
    st = playing()
    view = st.public_view('alice')
    assert 'secretWord' not in view['player1']
    assert 'secretWord' not in view['player2']
    assert view['player1']['secretWordSet'] is True

    done = duel.timeout(st, now=T0 + 60)
    view = done.public_view('alice')
    assert view['player1']['secretWord'] == 'crane'
    assert 'secretWord' not in view['player2']
    assert view['phase'] == 'finished'


def test_random_event_sequences_keep_invariants():
    rng = random.Random(21)
    words = ['smile', 'crane', 'trace', 'slate', 'error']
    for _ in range(50):
        st = playing()
        for _ in range(40):
            if st.phase is Phase.FINISHED:
                break
            player = rng.choice(['alice', 'bob', 'carol'])
            action = rng.choice(['commit', 'reveal', 'reveal', 'timeout'])
            before = st
            try:
                if action == 'commit':
                    st = duel.commit_guess(st, player)
                elif action == 'reveal':
                    st = duel.reveal_guess(st, player, rng.choice(words), now=T0)
                else:
                    st = duel.timeout(st, now=T0 + rng.choice([0, 100]))
            except DuelError:
                assert st is before
                continue

            assert st.turn >= before.turn
            for old, new in zip(before.slots, st.slots):
                if len(new.guesses) > len(old.guesses):
                    assert old.committed and not old.revealed
            if st.turn > before.turn:
                assert st.turn == before.turn + 1
                assert not any(s.revealed or s.committed for s in st.slots)
