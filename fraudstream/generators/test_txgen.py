#!/usr/bin/env python3
"""
Tests for the synthetic transaction generator.

Validates reproducibility, realism of the legitimate history and the
shape of each injected fraud episode.
"""

import os
import sys

import pytest

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from fraudstream.core.models.config import DEFAULT_HIGH_RISK_COUNTRIES
from fraudstream.generators.txgen import MS_PER_HOUR, TransactionGenerator


def test_same_seed_reproduces_stream():
    a = TransactionGenerator(num_accounts=4, fraud_rate=0.2, seed=11)
    b = TransactionGenerator(num_accounts=4, fraud_rate=0.2, seed=11)

    assert a.baseline(per_account=10) == b.baseline(per_account=10)
    assert list(a.stream(50)) == list(b.stream(50))


def test_baseline_is_time_ordered_daytime_history():
    generator = TransactionGenerator(num_accounts=5, seed=1)
    history = generator.baseline(per_account=20)

    assert len(history) == 100
    assert [tx.timestamp for tx in history] == sorted(tx.timestamp for tx in history)
    assert {tx.account_id for tx in history} == {p.account_id for p in generator.accounts}

    for tx in history:
        assert tx.amount < 0
        assert 8 <= (tx.timestamp // MS_PER_HOUR) % 24 <= 21
        assert tx.country not in DEFAULT_HIGH_RISK_COUNTRIES
        assert tx.previous_balance is not None


def test_accounts_keep_their_habits():
    generator = TransactionGenerator(num_accounts=3, seed=5)
    history = generator.baseline(per_account=30)

    for profile in generator.accounts:
        own = [tx for tx in history if tx.account_id == profile.account_id]
        assert {tx.device_id for tx in own} == {profile.device_id}
        assert {tx.merchant for tx in own} <= {m for m, _ in profile.merchants}
        assert {tx.city for tx in own} == {profile.city}


def test_stream_emits_exact_count_and_labels():
    assert len(list(TransactionGenerator(seed=2, fraud_rate=0.5).stream(37))) == 37

    clean = list(TransactionGenerator(seed=2, fraud_rate=0.0).stream(100))
    assert not any(labeled.is_fraud for labeled in clean)

    fraud = list(TransactionGenerator(seed=2, fraud_rate=1.0).stream(40))
    assert all(labeled.is_fraud and labeled.fraud_type for labeled in fraud)


def test_account_takeover_episode():
    generator = TransactionGenerator(num_accounts=1, seed=9)
    profile = generator.accounts[0]
    generator.legitimate(profile)

    [labeled] = generator.fraudulent(profile, 'account_takeover')
    tx = labeled.transaction

    assert labeled.is_fraud
    assert tx.country in DEFAULT_HIGH_RISK_COUNTRIES
    assert 1 <= (tx.timestamp // MS_PER_HOUR) % 24 <= 4
    assert tx.device_id != profile.device_id
    assert tx.channel == 'online'
    assert tx.abs_amount >= 20 * profile.mean_amount - 0.01


def test_burst_episode_packs_six_within_a_minute():
    generator = TransactionGenerator(num_accounts=1, seed=4)
    episode = generator.fraudulent(generator.accounts[0], 'burst')

    assert len(episode) >= 6
    stamps = [labeled.transaction.timestamp for labeled in episode]
    assert stamps == sorted(stamps)
    assert stamps[5] - stamps[0] <= 60_000


def test_card_testing_uses_tiny_amounts():
    generator = TransactionGenerator(num_accounts=1, seed=8)
    [labeled] = generator.fraudulent(generator.accounts[0], 'card_testing')

    assert labeled.transaction.abs_amount <= 1.0


def test_unknown_fraud_type_is_rejected():
    generator = TransactionGenerator(num_accounts=1)
    with pytest.raises(ValueError):
        generator.fraudulent(generator.accounts[0], 'phishing')


def test_invalid_parameters_are_rejected():
    with pytest.raises(ValueError):
        TransactionGenerator(fraud_rate=1.5)
    with pytest.raises(ValueError):
        TransactionGenerator(num_accounts=0)


def test_feedback_carries_ground_truth():
    generator = TransactionGenerator(num_accounts=1, seed=3)
    [labeled] = generator.fraudulent(generator.accounts[0], 'card_testing')

    event = TransactionGenerator.feedback_for(labeled)

    assert event.transaction_id == labeled.transaction.id
    assert event.is_fraud is True
    assert event.category == 'card_testing'
    assert event.timestamp > labeled.transaction.timestamp
