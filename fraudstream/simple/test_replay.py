#!/usr/bin/env python3
"""
Tests for the replay harness.
"""

import os
import sys

import structlog
from click.testing import CliRunner
from pydantic import ValidationError

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from fraudstream.core.fraud_detector import FraudScorer
from fraudstream.core.models.config import LoggingConfig
from fraudstream.generators.txgen import TransactionGenerator
from fraudstream.simple.replay import configure_logging, main, run_replay


def test_run_replay_summary():
    scorer = FraudScorer()
    generator = TransactionGenerator(num_accounts=4, fraud_rate=0.1, seed=21)

    summary = run_replay(scorer, generator, baseline_per_account=15, count=120)

    assert summary['baseline_samples'] == 60
    assert summary['scored'] == 120
    assert sum(summary['categories'].values()) == 120
    assert summary['stats'].total_scored == 120
    assert summary['stats'].phase == 'warm'
    assert summary['stats'].feedback_count == summary['stats'].flagged_count
    assert 0.0 <= summary['precision'] <= 1.0
    assert 0.0 <= summary['recall'] <= 1.0


def test_run_replay_without_baseline_stays_cold():
    summary = run_replay(FraudScorer(), TransactionGenerator(num_accounts=2, seed=1), 0, 20)

    assert summary['baseline_samples'] == 0
    assert summary['stats'].phase == 'cold'
    assert summary['stats'].recalibrations == 0


def test_cli_prints_summary():
    runner = CliRunner()
    result = runner.invoke(main, ['--accounts', '3', '--baseline', '10', '--count', '40', '--seed', '7'])

    assert result.exit_code == 0, result.output
    assert "Fraud scoring replay summary" in result.output
    assert "transactions scored:  40" in result.output


def test_cli_rejects_invalid_fraud_rate():
    result = CliRunner().invoke(main, ['--fraud-rate', '2.0'])

    assert result.exit_code != 0


def test_cli_rejects_invalid_env_config(monkeypatch):
    monkeypatch.setenv("FRAUD_HISTORY_CAP", "-4")

    result = CliRunner().invoke(main, ['--count', '5', '--background-recalibration'])

    assert result.exit_code != 0
    assert isinstance(result.exception, ValidationError)


def test_logging_binds_service_context():
    try:
        configure_logging(LoggingConfig(service_name="svc-test", environment="staging", format="text"))

        context = structlog.contextvars.get_contextvars()
        assert context['service'] == "svc-test"
        assert context['environment'] == "staging"
    finally:
        structlog.contextvars.clear_contextvars()
