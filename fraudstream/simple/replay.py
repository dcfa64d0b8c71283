#!/usr/bin/env python3
"""
Replay harness for the fraud scorer.

Fits a baseline on synthetic fraud-free history, replays a labeled
stream through a FraudScorer, feeds back ground truth for every flagged
transaction and prints a summary of the run.
"""

import logging
import sys
from collections import Counter
from typing import Dict, Optional

import click
import structlog
from prometheus_client import start_http_server

from fraudstream.core.fraud_detector import FraudScorer
from fraudstream.core.models.config import FeedbackConfig, LoggingConfig, ScorerConfig
from fraudstream.generators.txgen import TransactionGenerator

logger = structlog.get_logger(__name__)


def configure_logging(config: LoggingConfig, verbose: bool = False):
    """Configure structlog over the stdlib logging module."""
    renderer = structlog.processors.JSONRenderer() if config.format == "json" else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service=config.service_name, environment=config.environment)

    level = logging.DEBUG if verbose else getattr(logging, config.level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)
    logging.getLogger().setLevel(level)


def run_replay(scorer: FraudScorer, generator: TransactionGenerator,
               baseline_per_account: int, count: int) -> Dict:
    """Fit, replay and collect a summary of outcomes."""
    fitted = scorer.fit_baseline(generator.baseline(baseline_per_account))

    categories = Counter()
    confusion = Counter()
    recalibrations_started = 0

    for labeled in generator.stream(count):
        result = scorer.score_transaction(labeled.transaction)
        categories[result.category] += 1
        confusion[(result.is_fraud, labeled.is_fraud)] += 1

        # Analysts only review what was flagged
        if result.is_fraud:
            if scorer.record_feedback(generator.feedback_for(labeled)):
                recalibrations_started += 1

    scorer.wait_for_recalibration(timeout=30)
    stats = scorer.get_stats()

    flagged = confusion[(True, True)] + confusion[(True, False)]
    actual = confusion[(True, True)] + confusion[(False, True)]

    return {
        'baseline_samples': fitted,
        'scored': count,
        'categories': dict(categories),
        'true_positives': confusion[(True, True)],
        'false_positives': confusion[(True, False)],
        'false_negatives': confusion[(False, True)],
        'precision': confusion[(True, True)] / flagged if flagged else 0.0,
        'recall': confusion[(True, True)] / actual if actual else 0.0,
        'recalibrations_started': recalibrations_started,
        'stats': stats,
    }


def print_summary(summary: Dict):
    stats = summary['stats']
    click.echo("Fraud scoring replay summary")
    click.echo(f"  baseline samples:     {summary['baseline_samples']}")
    click.echo(f"  transactions scored:  {summary['scored']}")
    for category in sorted(summary['categories']):
        click.echo(f"  {category + ':':<21} {summary['categories'][category]}")
    click.echo(f"  flagged:              {stats.flagged_count}")
    click.echo(f"  true positives:       {summary['true_positives']}")
    click.echo(f"  false positives:      {summary['false_positives']}")
    click.echo(f"  false negatives:      {summary['false_negatives']}")
    click.echo(f"  precision:            {summary['precision']:.2%}")
    click.echo(f"  recall:               {summary['recall']:.2%}")
    click.echo(f"  feedback events:      {stats.feedback_count}")
    click.echo(f"  false positive rate:  {stats.false_positive_rate:.2%}")
    click.echo(f"  recalibrations:       {stats.recalibrations}")
    click.echo(f"  avg latency (ms):     {stats.avg_latency_ms:.3f}")
    click.echo(f"  p99 latency (ms):     {stats.p99_latency_ms:.3f}")
    click.echo(f"  phase:                {stats.phase}")


@click.command()
@click.option('--accounts', '-a', default=20, type=click.IntRange(min=1), help='Number of synthetic accounts')
@click.option('--baseline', '-b', 'baseline_per_account', default=50, type=click.IntRange(min=0),
              help='Baseline transactions per account')
@click.option('--count', '-n', default=1000, type=click.IntRange(min=0), help='Transactions to replay')
@click.option('--fraud-rate', '-f', default=0.02, type=click.FloatRange(0.0, 1.0), help='Fraud injection rate (0.0-1.0)')
@click.option('--seed', default=42, help='Random seed')
@click.option('--background-recalibration', is_flag=True, help='Refit the ensemble on a background thread')
@click.option('--metrics-port', default=None, type=int, help='Port for metrics server (optional)')
@click.option('--verbose', '-v', is_flag=True, help='Verbose logging')
def main(accounts, baseline_per_account, count, fraud_rate, seed, background_recalibration,
         metrics_port: Optional[int], verbose):
    """Replay a synthetic transaction stream through the fraud scorer."""

    config = ScorerConfig.from_env()
    if background_recalibration:
        config.feedback = FeedbackConfig(**{**config.feedback.model_dump(), "background_recalibration": True})

    configure_logging(config.logging, verbose)

    if metrics_port:
        start_http_server(metrics_port)
        logger.info("Metrics server started", port=metrics_port)

    try:
        scorer = FraudScorer(config)
        generator = TransactionGenerator(num_accounts=accounts, fraud_rate=fraud_rate, seed=seed)
        summary = run_replay(scorer, generator, baseline_per_account, count)
    except Exception as e:
        logger.error("Replay failed", error=str(e))
        raise

    print_summary(summary)


if __name__ == '__main__':
    main()
