"""Unit tests for duplicate fee detection"""

from datetime import date

from scrutix_engine.domain.detectors import duplicates
from scrutix_engine.domain.models import (
    AnomalyType,
    DetectionThresholds,
    DuplicateThresholds,
    Severity,
    TransactionType,
)


def test_account_fee_charged_twice(make_txn, lookup, thresholds):
    """Same fee one day apart: one anomaly for the extra 15 000 FCFA"""
    transactions = [
        make_txn(date(2024, 3, 1), -15000, "FRAIS DE TENUE DE COMPTE", type=TransactionType.FEE),
        make_txn(date(2024, 3, 2), -15000, "FRAIS DE TENUE DE COMPTE", type=TransactionType.FEE),
    ]

    anomalies = duplicates.detect(transactions, lookup, thresholds)

    assert len(anomalies) == 1
    anomaly = anomalies[0]
    assert anomaly.type == AnomalyType.DUPLICATE_FEE
    assert anomaly.amount == 15000
    assert anomaly.severity.rank >= Severity.HIGH.rank
    assert anomaly.transaction_ids == {t.id for t in transactions}
    assert 0 < anomaly.confidence <= 1


def test_detection_is_independent_of_input_order(make_txn, lookup, thresholds):
    first = make_txn(date(2024, 3, 1), -2500, "COMMISSION VIREMENT", id="a")
    second = make_txn(date(2024, 3, 3), -2500, "COMMISSION VIREMENT", id="b")

    forward = duplicates.detect([first, second], lookup, thresholds)
    backward = duplicates.detect([second, first], lookup, thresholds)

    assert [a.transaction_ids for a in forward] == [a.transaction_ids for a in backward]
    assert forward[0].amount == backward[0].amount == 2500


def test_outside_time_window_not_duplicates(make_txn, lookup, thresholds):
    transactions = [
        make_txn(date(2024, 3, 1), -15000, "FRAIS DE TENUE DE COMPTE"),
        make_txn(date(2024, 3, 10), -15000, "FRAIS DE TENUE DE COMPTE"),
    ]

    assert duplicates.detect(transactions, lookup, thresholds) == []


def test_different_amounts_or_wording_not_duplicates(make_txn, lookup, thresholds):
    transactions = [
        make_txn(date(2024, 3, 1), -15000, "FRAIS DE TENUE DE COMPTE"),
        make_txn(date(2024, 3, 1), -12000, "FRAIS DE TENUE DE COMPTE"),
        make_txn(date(2024, 3, 2), -15000, "RETRAIT DAB AKWA"),
    ]

    assert duplicates.detect(transactions, lookup, thresholds) == []


def test_credits_are_ignored(make_txn, lookup, thresholds):
    transactions = [
        make_txn(date(2024, 3, 1), 50000, "VERSEMENT ESPECES", type=TransactionType.CREDIT),
        make_txn(date(2024, 3, 1), 50000, "VERSEMENT ESPECES", type=TransactionType.CREDIT),
    ]

    assert duplicates.detect(transactions, lookup, thresholds) == []


def test_cluster_of_three_counts_all_but_one(make_txn, lookup, thresholds):
    transactions = [
        make_txn(date(2024, 3, day), -1000, "ALERTES SMS") for day in (1, 2, 3)
    ]

    anomalies = duplicates.detect(transactions, lookup, thresholds)

    assert len(anomalies) == 1
    assert anomalies[0].amount == 2000
    assert len(anomalies[0].transactions) == 3
    assert anomalies[0].severity == Severity.HIGH


def test_custom_window_respected(make_txn, lookup):
    transactions = [
        make_txn(date(2024, 3, 1), -5000, "FRAIS DOSSIER"),
        make_txn(date(2024, 3, 4), -5000, "FRAIS DOSSIER"),
    ]
    narrow = DetectionThresholds(duplicates=DuplicateThresholds(time_window_days=2))

    assert duplicates.detect(transactions, lookup, narrow) == []


def test_severity_scale():
    assert duplicates.duplicate_severity(60000, 2) == Severity.CRITICAL
    assert duplicates.duplicate_severity(1000, 5) == Severity.CRITICAL
    assert duplicates.duplicate_severity(10000, 2) == Severity.HIGH
    assert duplicates.duplicate_severity(2000, 2) == Severity.MEDIUM
    assert duplicates.duplicate_severity(500, 2) == Severity.LOW
