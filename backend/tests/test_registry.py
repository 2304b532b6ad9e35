from datetime import timedelta
import threading

import pytest

from wagerplay.errors import GameNotActive, MatchNotFound
from wagerplay.models import utcnow
from wagerplay.services.matches.registry import MatchRegistry
from wagerplay.services.matches.state import MatchState, PlayerRef


def _match(match_id, status='waiting', age=0):
    return MatchState(
        id=match_id,
        bet_amount=10,
        players={'X': PlayerRef(1, 'a'), 'O': None},
        status=status,
        created_at=utcnow() - timedelta(seconds=age),
    )


def test_add_get_remove():
    registry = MatchRegistry()
    match = _match('m1')
    registry.add(match)
    assert 'm1' in registry
    assert len(registry) == 1
    assert registry.get('m1') is match
    assert registry.remove('m1') is match
    assert registry.get('m1') is None
    assert registry.remove('m1') is None


def test_duplicate_add_rejected():
    registry = MatchRegistry()
    registry.add(_match('m1'))
    with pytest.raises(ValueError):
        registry.add(_match('m1'))


def test_list_filters_and_orders_by_age():
    registry = MatchRegistry()
    registry.add(_match('new', age=1))
    registry.add(_match('old', age=100))
    registry.add(_match('busy', status='playing', age=50))
    assert [m.id for m in registry.list()] == ['old', 'busy', 'new']
    assert [m.id for m in registry.list(status='waiting')] == ['old', 'new']
    assert [m.id for m in registry.list(predicate=lambda m: m.id.startswith('b'))] == ['busy']


def test_replace_only_touches_registered_matches():
    registry = MatchRegistry()
    registry.add(_match('m1'))
    updated = _match('m1', status='playing')
    registry.replace(updated)
    assert registry.get('m1') is updated
    registry.replace(_match('ghost'))
    assert 'ghost' not in registry


def test_locked_yields_current_state():
    registry = MatchRegistry()
    match = _match('m1')
    registry.add(match)
    with registry.locked('m1') as current:
        assert current is match


def test_locked_unknown_match():
    registry = MatchRegistry()
    with pytest.raises(MatchNotFound):
        with registry.locked('nope'):
            pass


def test_missing_hook_can_raise_something_better():
    registry = MatchRegistry()
    seen = []

    def archived(match_id):
        seen.append(match_id)
        raise GameNotActive()

    with pytest.raises(GameNotActive):
        with registry.locked('gone', missing=archived):
            pass
    assert seen == ['gone']


def test_waiter_sees_removal_made_while_it_waited():
    registry = MatchRegistry()
    registry.add(_match('m1'))
    waiting = threading.Event()
    outcome = []

    def contender():
        waiting.set()
        try:
            with registry.locked('m1'):
                outcome.append('entered')
        except MatchNotFound:
            outcome.append('not_found')

    with registry.locked('m1'):
        worker = threading.Thread(target=contender)
        worker.start()
        waiting.wait(1)
        registry.remove('m1')
    worker.join(2)
    assert outcome == ['not_found']


def test_distinct_matches_do_not_block_each_other():
    registry = MatchRegistry()
    registry.add(_match('a'))
    registry.add(_match('b'))
    entered = threading.Event()

    def lock_b():
        with registry.locked('b'):
            entered.set()

    with registry.locked('a'):
        worker = threading.Thread(target=lock_b)
        worker.start()
        assert entered.wait(1)
    worker.join(1)


def test_lock_is_reentrant():
    registry = MatchRegistry()
    registry.add(_match('m1'))
    with registry.locked('m1'):
        with registry.locked('m1') as inner:
            assert inner.id == 'm1'
