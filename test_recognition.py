"""
Tests for the in-memory recognition stores

Run with: pytest test_recognition.py -v

Every test drives explicit timestamps instead of sleeping.
"""

import threading
from dataclasses import replace

import pytest

from services.capability_tokens import CapabilityTokenIssuer
from services.cooldown import CooldownRecord, IdentificationCooldowns
from services.engine import build_engine
from services.errors import IdentificationNotFound
from services.expiring_store import ExpiringStore
from services.identification_queue import IdentificationQueue, IdentificationRecord
from services.rate_limiter import LoginRateLimiter, RequestCeiling
from services.sweeper import StoreSweeper

T0 = 1_700_000_000.0
EPS = 0.001


def _record(name='Alice', created_at=T0, **kwargs):
    return IdentificationRecord(
        display_name=name,
        points_balance=kwargs.pop('points_balance', 0),
        visit_count=kwargs.pop('visit_count', 0),
        is_new=kwargs.pop('is_new', True),
        created_at=created_at,
        **kwargs,
    )


class TestExpiringStore:
    """Test the TTL map every component builds on"""

    def test_entry_visible_until_ttl(self):
        store = ExpiringStore('test', 60)
        store.put('k', 'v', inserted_at=T0)

        assert store.get('k', now=T0 + 60 - EPS) == 'v'
        assert store.get('k', now=T0 + 60 + EPS) is None

    def test_expired_entry_invisible_before_sweep(self):
        store = ExpiringStore('test', 60)
        store.put('k', 'v', inserted_at=T0)

        assert store.get('k', now=T0 + 61) is None
        assert len(store) == 1
        assert store.sweep(now=T0 + 61) == 1
        assert len(store) == 0

    def test_pop_is_destructive(self):
        store = ExpiringStore('test', 60)
        store.put('k', 'v', inserted_at=T0)

        assert store.pop('k', now=T0 + 1) == 'v'
        assert store.pop('k', now=T0 + 2) is None

    def test_pop_of_expired_entry_deletes_it(self):
        store = ExpiringStore('test', 60)
        store.put('k', 'v', inserted_at=T0)

        assert store.pop('k', now=T0 + 120) is None
        assert len(store) == 0

    def test_sweep_keeps_fresh_entries(self):
        store = ExpiringStore('test', 60)
        store.put('old', 1, inserted_at=T0)
        store.put('new', 2, inserted_at=T0 + 50)

        assert store.sweep(now=T0 + 70) == 1
        assert store.get('new', now=T0 + 70) == 2

    def test_sweep_with_custom_ttl(self):
        store = ExpiringStore('test', 600)
        store.put('k', 1, inserted_at=T0)

        assert store.sweep(now=T0 + 100, ttl_seconds=60) == 1

    def test_upsert_restamps_and_modify_keeps_timestamp(self):
        store = ExpiringStore('test', 60)
        store.upsert('count', lambda v: (v or 0) + 1, now=T0)
        store.modify('count', lambda v: v + 10, now=T0 + 30)

        assert store.inserted_at('count', now=T0 + 30) == T0
        assert store.get('count', now=T0 + 30) == 11

        store.upsert('count', lambda v: (v or 0) + 1, now=T0 + 50)
        assert store.get('count', now=T0 + 100) == 12

    def test_modify_absent_key_returns_none(self):
        store = ExpiringStore('test', 60)
        assert store.modify('missing', lambda v: v, now=T0) is None
        assert len(store) == 0

    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValueError):
            ExpiringStore('test', 0)

    def test_concurrent_writers_on_distinct_keys(self):
        store = ExpiringStore('test', 60)

        def writer(prefix):
            for i in range(200):
                store.put(f'{prefix}-{i}', i)

        threads = [threading.Thread(target=writer, args=(p,)) for p in 'abcd']
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(store) == 800


class TestIdentificationQueue:
    """Test the per-merchant pending identification queue"""

    def test_enqueue_replaces_same_identifier(self):
        queue = IdentificationQueue(ttl_seconds=900)
        queue.enqueue(1, 'alice@example.com', _record('first', created_at=T0))
        second_id = queue.enqueue(1, 'alice@example.com', _record('second', created_at=T0 + 1))

        entries = queue.list(1, now=T0 + 2)
        assert len(entries) == 1
        assert entries[0].identification_id == second_id
        assert entries[0].record.display_name == 'second'

    def test_recent_duplicate_lives_next_to_plain_entry(self):
        queue = IdentificationQueue(ttl_seconds=900)
        queue.enqueue(1, 'alice@example.com', _record(created_at=T0))
        queue.enqueue(1, 'alice@example.com', _record(
            created_at=T0 + 60, recent_duplicate=True, minutes_since_previous=1))

        entries = queue.list(1, now=T0 + 61)
        assert len(entries) == 2
        assert entries[0].record.recent_duplicate is True
        assert entries[0].to_dict()['minutesSincePrevious'] == 1

    def test_list_is_scoped_and_ordered(self):
        queue = IdentificationQueue(ttl_seconds=900)
        queue.enqueue(1, 'a@example.com', _record('a', created_at=T0))
        queue.enqueue(1, 'b@example.com', _record('b', created_at=T0 + 10))
        queue.enqueue(2, 'c@example.com', _record('c', created_at=T0 + 20))

        entries = queue.list(1, now=T0 + 30)
        assert [e.record.display_name for e in entries] == ['b', 'a']
        assert [e.elapsed_seconds for e in entries] == [20, 30]

    def test_entry_expires_at_ttl(self):
        queue = IdentificationQueue(ttl_seconds=900)
        identification_id = queue.enqueue(1, 'a@example.com', _record(created_at=T0))

        assert queue.get(1, identification_id, now=T0 + 900 - EPS) is not None
        assert len(queue.list(1, now=T0 + 900 - EPS)) == 1
        assert queue.get(1, identification_id, now=T0 + 900 + EPS) is None
        assert queue.list(1, now=T0 + 900 + EPS) == []

    def test_consume_exactly_once(self):
        queue = IdentificationQueue(ttl_seconds=900)
        identification_id = queue.enqueue(1, 'a@example.com', _record(created_at=T0))

        record = queue.consume(1, identification_id, now=T0 + 5)
        assert record.display_name == 'Alice'
        with pytest.raises(IdentificationNotFound):
            queue.consume(1, identification_id, now=T0 + 5)

    def test_concurrent_consume_has_one_winner(self):
        queue = IdentificationQueue(ttl_seconds=900)
        identification_id = queue.enqueue(1, 'a@example.com', _record(created_at=T0))
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            try:
                queue.consume(1, identification_id, now=T0 + 1)
                results.append('ok')
            except IdentificationNotFound:
                results.append('missing')

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count('ok') == 1
        assert results.count('missing') == 7

    def test_consume_expired_entry_fails(self):
        queue = IdentificationQueue(ttl_seconds=900)
        identification_id = queue.enqueue(1, 'a@example.com', _record(created_at=T0))

        with pytest.raises(IdentificationNotFound):
            queue.consume(1, identification_id, now=T0 + 901)

    def test_consume_by_other_merchant_leaves_entry(self):
        queue = IdentificationQueue(ttl_seconds=900)
        identification_id = queue.enqueue(1, 'a@example.com', _record(created_at=T0))

        with pytest.raises(IdentificationNotFound):
            queue.consume(2, identification_id, now=T0 + 1)
        assert queue.get(1, identification_id, now=T0 + 1) is not None

    def test_dismiss_is_idempotent(self):
        queue = IdentificationQueue(ttl_seconds=900)
        identification_id = queue.enqueue(1, 'a@example.com', _record(created_at=T0))

        queue.dismiss(1, identification_id, now=T0 + 1)
        queue.dismiss(1, identification_id, now=T0 + 1)
        queue.dismiss(1, 'never-existed', now=T0 + 1)
        assert queue.list(1, now=T0 + 1) == []

    def test_replacement_leaves_other_merchants_alone(self):
        queue = IdentificationQueue(ttl_seconds=900)
        other_id = queue.enqueue(2, 'alice@example.com', _record('elsewhere', created_at=T0))
        queue.enqueue(1, 'alice@example.com', _record('first', created_at=T0))
        queue.enqueue(1, 'alice@example.com', _record('second', created_at=T0 + 1))

        assert [e.record.display_name for e in queue.list(1, now=T0 + 2)] == ['second']
        assert [e.identification_id for e in queue.list(2, now=T0 + 2)] == [other_id]

    def test_enqueue_after_consume_does_not_touch_new_entries(self):
        queue = IdentificationQueue(ttl_seconds=900)
        first_id = queue.enqueue(1, 'alice@example.com', _record(created_at=T0))
        queue.consume(1, first_id, now=T0 + 1)

        second_id = queue.enqueue(1, 'alice@example.com', _record(created_at=T0 + 2))
        third_id = queue.enqueue(1, 'bob@example.com', _record('Bob', created_at=T0 + 3))

        ids = {e.identification_id for e in queue.list(1, now=T0 + 4)}
        assert ids == {second_id, third_id}

    def test_enqueue_with_reserved_id(self):
        queue = IdentificationQueue(ttl_seconds=900)
        identification_id = queue.enqueue(1, 'alice@example.com', _record(created_at=T0),
                                          identification_id='reserved-id')

        assert identification_id == 'reserved-id'
        assert queue.get(1, 'reserved-id', now=T0 + 1) is not None

    def test_prune_index_drops_expired_entries(self):
        queue = IdentificationQueue(ttl_seconds=900)
        queue.enqueue(1, 'old@example.com', _record(created_at=T0))
        fresh_id = queue.enqueue(1, 'new@example.com', _record(created_at=T0 + 600))

        assert queue.prune_index(now=T0 + 901) == 1
        queue.enqueue(1, 'new@example.com', _record('again', created_at=T0 + 902))
        assert queue.get(1, fresh_id, now=T0 + 903) is None
        assert [e.record.display_name for e in queue.list(1, now=T0 + 903)] == ['again']


class TestIdentificationCooldowns:
    """Test deduplication of repeated self-identification"""

    def _outcome(self, at=T0):
        return CooldownRecord(
            identified_at=at,
            identification_id='id-1',
            is_new=True,
            display_name='Alice',
            points_balance=0,
            customer_id=7,
        )

    def test_outcome_kept_for_window(self):
        cooldowns = IdentificationCooldowns(window_seconds=900)
        cooldowns.record_outcome(1, 'alice@example.com', self._outcome())

        assert cooldowns.get_outcome(1, 'alice@example.com', now=T0 + 899).identification_id == 'id-1'
        assert cooldowns.get_outcome(1, 'alice@example.com', now=T0 + 901) is None
        assert cooldowns.get_outcome(2, 'alice@example.com', now=T0 + 1) is None

    def test_flag_duplicate_only_once_per_window(self):
        cooldowns = IdentificationCooldowns(window_seconds=900)
        cooldowns.record_outcome(1, 'alice@example.com', self._outcome())

        assert cooldowns.flag_duplicate(1, 'alice@example.com', now=T0 + 60) is True
        assert cooldowns.flag_duplicate(1, 'alice@example.com', now=T0 + 120) is False

    def test_flag_does_not_extend_window(self):
        cooldowns = IdentificationCooldowns(window_seconds=900)
        cooldowns.record_outcome(1, 'alice@example.com', self._outcome())
        cooldowns.flag_duplicate(1, 'alice@example.com', now=T0 + 800)

        assert cooldowns.get_outcome(1, 'alice@example.com', now=T0 + 901) is None

    def test_flag_without_outcome(self):
        cooldowns = IdentificationCooldowns(window_seconds=900)
        assert cooldowns.flag_duplicate(1, 'nobody@example.com', now=T0) is False

    def test_minutes_since(self):
        assert self._outcome().minutes_since(T0 + 150) == 2

    def test_record_if_absent_keeps_first_outcome(self):
        cooldowns = IdentificationCooldowns(window_seconds=900)
        first = self._outcome()
        later = replace(self._outcome(at=T0 + 5), identification_id='id-2')

        assert cooldowns.record_outcome_if_absent(1, 'alice@example.com', first) is first
        assert cooldowns.record_outcome_if_absent(1, 'alice@example.com', later) is first
        assert cooldowns.get_outcome(1, 'alice@example.com', now=T0 + 6).identification_id == 'id-1'

    def test_record_if_absent_after_window(self):
        cooldowns = IdentificationCooldowns(window_seconds=900)
        cooldowns.record_outcome(1, 'alice@example.com', self._outcome())
        later = replace(self._outcome(at=T0 + 901), identification_id='id-2')

        assert cooldowns.record_outcome_if_absent(1, 'alice@example.com', later) is later

    def test_concurrent_first_identifications_share_one_id(self):
        cooldowns = IdentificationCooldowns(window_seconds=900)
        queue = IdentificationQueue(ttl_seconds=900)
        answers = []
        barrier = threading.Barrier(8)

        def worker(n):
            outcome = replace(self._outcome(), identification_id=f'id-{n}')
            barrier.wait()
            winner = cooldowns.record_outcome_if_absent(1, 'alice@example.com', outcome)
            if winner is outcome:
                queue.enqueue(1, 'alice@example.com', _record(created_at=T0),
                              identification_id=outcome.identification_id)
            answers.append(winner.identification_id)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(answers) == 8
        assert len(set(answers)) == 1
        entries = queue.list(1, now=T0 + 1)
        assert [e.identification_id for e in entries] == [answers[0]]


class TestLoginRateLimiter:
    """Test failure counting and lockout"""

    def test_lockout_after_five_failures(self):
        limiter = LoginRateLimiter(max_failures=5, lockout_seconds=900)
        for i in range(4):
            limiter.record_failure('1.2.3.4', 'bob@example.com', now=T0 + i)
            assert limiter.check('1.2.3.4', 'bob@example.com', now=T0 + i).blocked is False

        assert limiter.record_failure('1.2.3.4', 'bob@example.com', now=T0 + 4) == 5
        status = limiter.check('1.2.3.4', 'bob@example.com', now=T0 + 5)
        assert status.blocked is True
        assert status.minutes_remaining == 15

    def test_lockout_expires_and_count_resets(self):
        limiter = LoginRateLimiter(max_failures=5, lockout_seconds=900)
        for i in range(5):
            limiter.record_failure('1.2.3.4', 'bob@example.com', now=T0)

        assert limiter.check('1.2.3.4', 'bob@example.com', now=T0 + 899).blocked is True
        assert limiter.check('1.2.3.4', 'bob@example.com', now=T0 + 901).blocked is False
        assert limiter.failures('1.2.3.4', 'bob@example.com', now=T0 + 901) == 0

        assert limiter.record_failure('1.2.3.4', 'bob@example.com', now=T0 + 902) == 1

    def test_failures_during_lockout_do_not_extend_it(self):
        limiter = LoginRateLimiter(max_failures=5, lockout_seconds=900)
        for i in range(5):
            limiter.record_failure('1.2.3.4', 'bob@example.com', now=T0)
        limiter.record_failure('1.2.3.4', 'bob@example.com', now=T0 + 600)

        status = limiter.check('1.2.3.4', 'bob@example.com', now=T0 + 600)
        assert status.minutes_remaining == 5
        assert limiter.check('1.2.3.4', 'bob@example.com', now=T0 + 901).blocked is False

    def test_pairs_are_independent(self):
        limiter = LoginRateLimiter(max_failures=2, lockout_seconds=900)
        limiter.record_failure('1.2.3.4', 'bob@example.com', now=T0)
        limiter.record_failure('1.2.3.4', 'BOB@example.com', now=T0)

        assert limiter.check('1.2.3.4', 'bob@example.com', now=T0).blocked is True
        assert limiter.check('5.6.7.8', 'bob@example.com', now=T0).blocked is False
        assert limiter.check('1.2.3.4', 'carol@example.com', now=T0).blocked is False

    def test_clear_resets_counter(self):
        limiter = LoginRateLimiter(max_failures=5, lockout_seconds=900)
        limiter.record_failure('1.2.3.4', 'bob@example.com', now=T0)
        limiter.clear('1.2.3.4', 'bob@example.com')

        assert limiter.failures('1.2.3.4', 'bob@example.com', now=T0) == 0


class TestRequestCeiling:
    """Test the coarse per-origin ceiling"""

    def test_blocks_after_limit(self):
        ceiling = RequestCeiling(limit=3, window_seconds=3600)
        for i in range(3):
            assert ceiling.hit('1.2.3.4', now=T0 + i).blocked is False

        status = ceiling.hit('1.2.3.4', now=T0 + 10)
        assert status.blocked is True
        assert status.minutes_remaining == 60
        assert ceiling.check('5.6.7.8', now=T0 + 10).blocked is False

    def test_blocked_hits_are_not_counted(self):
        ceiling = RequestCeiling(limit=2, window_seconds=3600)
        ceiling.hit('1.2.3.4', now=T0)
        ceiling.hit('1.2.3.4', now=T0 + 1)
        for i in range(10):
            ceiling.hit('1.2.3.4', now=T0 + 100 + i)

        # window runs from the last counted hit only
        assert ceiling.check('1.2.3.4', now=T0 + 1 + 3600 + EPS).blocked is False


class TestCapabilityTokens:
    """Test single-use capability tokens"""

    def test_resolves_exactly_once(self):
        issuer = CapabilityTokenIssuer('verify_tokens', 1800)
        token = issuer.issue(now=T0)

        grant = issuer.resolve(token, now=T0 + 1)
        assert grant is not None
        assert grant.payload is None
        assert issuer.resolve(token, now=T0 + 2) is None

    def test_payload_round_trip(self):
        issuer = CapabilityTokenIssuer('pin_tokens', 300)
        token = issuer.issue('pbkdf2:hash', now=T0)

        assert issuer.resolve(token, now=T0 + 10).payload == 'pbkdf2:hash'

    def test_expired_token_never_resolves(self):
        issuer = CapabilityTokenIssuer('pin_tokens', 300)
        token = issuer.issue('secret-hash', now=T0)

        assert issuer.resolve(token, now=T0 + 300 + EPS) is None
        assert issuer.resolve(token, now=T0 + 1) is None
        assert len(issuer.store) == 0

    def test_issuers_do_not_share_tokens(self):
        pin_tokens = CapabilityTokenIssuer('pin_tokens', 300)
        verify_tokens = CapabilityTokenIssuer('verify_tokens', 1800)
        token = verify_tokens.issue(now=T0)

        assert pin_tokens.resolve(token, now=T0 + 1) is None
        assert verify_tokens.resolve(token, now=T0 + 1) is not None

    def test_blank_token(self):
        issuer = CapabilityTokenIssuer('verify_tokens', 1800)
        assert issuer.resolve(None) is None
        assert issuer.resolve('   ') is None

    def test_tokens_are_unique(self):
        issuer = CapabilityTokenIssuer('verify_tokens', 1800)
        tokens = {issuer.issue(now=T0) for _ in range(100)}
        assert len(tokens) == 100


class _BrokenStore(ExpiringStore):
    def sweep(self, now=None, ttl_seconds=None):
        raise RuntimeError('boom')


class TestStoreSweeper:
    """Test the background sweeper"""

    def test_failing_store_does_not_stop_others(self, caplog):
        good = ExpiringStore('good', 60)
        good.put('k', 1, inserted_at=T0)
        sweeper = StoreSweeper([_BrokenStore('broken', 60), good], interval_seconds=1)

        removed = sweeper.run_once(now=T0 + 120)

        assert removed == {'good': 1}
        assert 'broken' in caplog.text

    def test_start_and_stop(self):
        sweeper = StoreSweeper([ExpiringStore('s', 60)], interval_seconds=0.01)
        sweeper.start()
        assert sweeper.running is True

        sweeper.stop()
        sweeper.stop()
        assert sweeper.running is False

    def test_after_sweep_hooks_run(self):
        queue = IdentificationQueue(ttl_seconds=60)
        queue.enqueue(1, 'a@example.com', _record(created_at=T0))
        calls = []

        def hook(now):
            calls.append(now)
            return queue.prune_index(now)

        sweeper = StoreSweeper([queue.store], interval_seconds=1, after_sweep=[hook])
        assert sweeper.run_once(now=T0 + 120) == {'pending_identifications': 1}
        assert calls == [T0 + 120]


class TestBuildEngine:
    """Test composition from configuration"""

    def test_reads_configuration(self):
        engine = build_engine({
            'QR_IDENTIFICATION_TTL_SECONDS': 60,
            'LOGIN_MAX_FAILED_ATTEMPTS': 3,
            'PIN_TOKEN_TTL_SECONDS': 30,
        })

        assert engine.identifications.ttl_seconds == 60
        assert engine.login_limiter.max_failures == 3
        assert engine.pin_tokens.ttl_seconds == 30
        assert engine.verify_tokens.ttl_seconds == 1800
        assert len(engine.stores) == 7

    def test_engines_are_isolated(self):
        first = build_engine({})
        second = build_engine({})
        first.identifications.enqueue(1, 'a@example.com', _record(created_at=T0))

        assert second.identifications.list(1, now=T0) == []

    def test_verify_token_bound_to_customer(self):
        engine = build_engine({})
        tokens = engine.grant_customer_access(1, 7, now=T0)

        assert 'pinToken' not in tokens
        assert engine.check_verify_token(tokens['verifyToken'], 1, 8, now=T0 + 1) is False
        # the mismatched attempt consumed it
        assert engine.check_verify_token(tokens['verifyToken'], 1, 7, now=T0 + 2) is False

    def test_pin_token_carries_hash(self):
        engine = build_engine({})
        tokens = engine.grant_customer_access(1, 7, pin_hash='stored-hash', now=T0)

        assert engine.pin_hash_for(tokens['pinToken'], now=T0 + 1) == 'stored-hash'
        assert engine.pin_hash_for(tokens['pinToken'], now=T0 + 2) is None
