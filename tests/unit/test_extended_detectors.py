"""Unit tests for the extended detectors and the registry"""

import pytest
from datetime import date, timedelta

from scrutix_engine.domain.detectors import aml, cashflow, multi_bank, ohada, reconciliation, suspicious
from scrutix_engine.domain.detectors.registry import DEFAULT_DETECTORS, DetectorRegistry, descriptor
from scrutix_engine.domain.models import AnalysisConfig, AnomalyType, Severity, TransactionType


# Suspicious operations

def test_amount_spike_is_suspicious(make_txn, lookup, thresholds):
    base = date(2024, 3, 1)
    transactions = [make_txn(base + timedelta(days=i % 28), -10000, "PAIEMENT TPE") for i in range(40)]
    spike = make_txn(date(2024, 3, 15), -500000, "PAIEMENT TPE")

    anomalies = suspicious.detect(transactions + [spike], lookup, thresholds)

    spikes = [a for a in anomalies if a.transaction_ids == {spike.id}]
    assert len(spikes) == 1
    assert spikes[0].severity == Severity.HIGH
    assert spikes[0].amount == 0.0


def test_burst_of_operations_in_one_day(make_txn, lookup, thresholds):
    transactions = [make_txn(date(2024, 3, 1), -1000, "ACHAT TPE") for _ in range(11)]

    anomalies = suspicious.detect(transactions, lookup, thresholds)

    assert len(anomalies) == 1
    assert len(anomalies[0].transactions) == 11


def test_sensitive_wording(make_txn, lookup, thresholds):
    anomalies = suspicious.detect([make_txn(date(2024, 3, 1), -20000, "RETRAIT URGENT")], lookup, thresholds)

    assert [a.severity for a in anomalies] == [Severity.LOW]


# OHADA

def test_undocumented_large_operation(make_txn, lookup, thresholds):
    anomalies = ohada.detect([make_txn(date(2024, 3, 1), -150000, "VIR")], lookup, thresholds)

    assert len(anomalies) == 1
    assert anomalies[0].type == AnomalyType.OHADA_NON_COMPLIANCE


def test_cash_above_ceiling(make_txn, lookup, thresholds):
    cash = make_txn(date(2024, 3, 1), -750000, "RETRAIT ESPECES GUICHET", reference="CHQ123456")

    anomalies = ohada.detect([cash], lookup, thresholds)

    assert len(anomalies) == 1
    assert anomalies[0].severity == Severity.HIGH


# AML

def test_structuring_below_declaration_threshold(make_txn, lookup, thresholds):
    transactions = [
        make_txn(date(2024, 3, 1), -3_000_000, "VIREMENT EMIS SOCIETE A", reference="V1"),
        make_txn(date(2024, 3, 4), -3_000_000, "VIREMENT EMIS SOCIETE B", reference="V2"),
    ]

    anomalies = aml.detect(transactions, lookup, thresholds)

    assert len(anomalies) == 1
    assert anomalies[0].severity == Severity.CRITICAL
    assert anomalies[0].amount == 0.0


def test_aml_indicators(make_txn, lookup, thresholds):
    transactions = [
        make_txn(date(2024, 3, 1), -200000, "VIREMENT VERS IRAN"),
        make_txn(date(2024, 3, 2), -50000, "DEPOT CASINO"),
        make_txn(date(2024, 3, 3), 6_000_000, "VERSEMENT CAPITAL", type=TransactionType.CREDIT),
    ]

    anomalies = aml.detect(transactions, lookup, thresholds)

    assert len(anomalies) == 3
    assert all(a.type == AnomalyType.AML_ALERT for a in anomalies)
    assert sum(a.amount for a in anomalies) == 0


def test_repeated_identical_amounts(make_txn, lookup, thresholds):
    transactions = [make_txn(date(2024, 3, 1) + timedelta(days=i * 3), -250000, f"REGLEMENT {i}") for i in range(5)]

    anomalies = aml.detect(transactions, lookup, thresholds)

    assert len(anomalies) == 1
    assert anomalies[0].severity == Severity.HIGH


# Cash flow and reconciliation

def test_negative_balance_run(make_txn, lookup, thresholds):
    transactions = [make_txn(date(2024, 3, d), -1000, "ACHAT", balance=-10000 - d * 1000) for d in (1, 2, 3, 4)]
    transactions.append(make_txn(date(2024, 3, 5), 20000, "VERSEMENT", balance=6000, type=TransactionType.CREDIT))

    anomalies = cashflow.detect(transactions, lookup, thresholds)

    assert len(anomalies) == 1
    assert anomalies[0].type == AnomalyType.CASHFLOW_ANOMALY
    assert anomalies[0].severity == Severity.MEDIUM


def test_short_negative_period_ignored(make_txn, lookup, thresholds):
    transactions = [
        make_txn(date(2024, 3, 1), -1000, "ACHAT", balance=-500),
        make_txn(date(2024, 3, 2), 5000, "VERSEMENT", balance=4500, type=TransactionType.CREDIT),
    ]

    assert cashflow.detect(transactions, lookup, thresholds) == []


def test_running_balance_break(make_txn, lookup, thresholds):
    transactions = [
        make_txn(date(2024, 3, 1), -5000, "ACHAT", balance=100000),
        make_txn(date(2024, 3, 2), -10000, "ACHAT", balance=80000),
    ]

    anomalies = reconciliation.detect(transactions, lookup, thresholds)

    assert len(anomalies) == 1
    assert anomalies[0].type == AnomalyType.RECONCILIATION_GAP
    assert anomalies[0].evidence[0].expected_value == 90000


def test_same_day_lines_keep_statement_order(make_txn, lookup, thresholds):
    transactions = [
        make_txn(date(2024, 3, 1), -5000, "ACHAT", balance=10000),
        make_txn(date(2024, 3, 5), -1000, "ACHAT", balance=9000, id="z-first"),
        make_txn(date(2024, 3, 5), -2000, "ACHAT", balance=7000, id="a-second"),
    ]

    assert reconciliation.detect(transactions, lookup, thresholds) == []


def test_isolated_operation(make_txn, lookup, thresholds):
    transactions = [
        make_txn(date(2024, 1, 1), -10000, "ACHAT", balance=100000),
        make_txn(date(2024, 3, 1), -10000, "ACHAT", balance=90000),
        make_txn(date(2024, 5, 1), -10000, "ACHAT", balance=80000),
    ]

    anomalies = reconciliation.detect(transactions, lookup, thresholds)

    assert len(anomalies) == 1
    assert anomalies[0].severity == Severity.LOW
    assert anomalies[0].transactions[0].date == date(2024, 3, 1)


# Multi-bank

def test_single_bank_has_no_multi_bank_findings(make_txn, lookup, thresholds):
    transactions = [make_txn(date(2024, 3, 1), -25000, "ABONNEMENT CANAL PLUS") for _ in range(2)]

    assert multi_bank.detect(transactions, lookup, thresholds) == []


def test_cross_bank_duplicate(make_txn, lookup, thresholds):
    transactions = [
        make_txn(date(2024, 3, 1), -25000, "ABONNEMENT CANAL PLUS", bank_code="BICEC"),
        make_txn(date(2024, 3, 2), -25000, "ABONNEMENT CANAL PLUS", bank_code="SGC"),
    ]

    anomalies = multi_bank.detect(transactions, lookup, thresholds)

    assert len(anomalies) == 1
    assert anomalies[0].amount == 25000
    assert {t.bank_code for t in anomalies[0].transactions} == {"BICEC", "SGC"}


def test_fee_load_comparison_between_banks(make_txn, lookup, thresholds):
    transactions = [
        make_txn(date(2024, 3, 1), -1_000_000, "VIREMENT EMIS FOURNISSEUR ALPHA", bank_code="BICEC"),
        make_txn(date(2024, 3, 5), -10000, "FRAIS DIVERS", bank_code="BICEC"),
        make_txn(date(2024, 3, 20), -1_000_000, "PAIEMENT SALAIRES MARS", bank_code="SGC"),
        make_txn(date(2024, 3, 25), -50000, "FRAIS DIVERS", bank_code="SGC"),
    ]

    anomalies = multi_bank.detect(transactions, lookup, thresholds)

    assert len(anomalies) == 1
    assert anomalies[0].severity == Severity.LOW
    assert anomalies[0].amount == 0.0
    assert all(t.bank_code == "SGC" for t in anomalies[0].transactions)


# Registry

def test_default_registry_order():
    ids = [item.id for item in DetectorRegistry().all()]

    assert ids[:4] == ["duplicates", "ghost_fees", "overcharges", "interest"]
    assert len(ids) == len(DEFAULT_DETECTORS) == 18
    assert ids[-6:] == ["account_fees", "card_fees", "payment_methods", "international", "ancillary_services", "packages"]


def test_enabled_subset():
    registry = DetectorRegistry()
    config = AnalysisConfig(enabled_detectors={"interest", "duplicates"})

    assert [item.id for item in registry.enabled(config)] == ["duplicates", "interest"]
    assert len(registry.enabled(AnalysisConfig())) == 18


def test_duplicate_registration_rejected():
    registry = DetectorRegistry([])
    item = descriptor("custom", AnomalyType.FEE_ANOMALY, "Custom", lambda txns, conditions, thresholds: [])
    registry.register(item)

    with pytest.raises(ValueError):
        registry.register(item)
    assert registry.get("custom") is item
