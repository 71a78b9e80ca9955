"""Unit tests for the payment-method, international, ancillary and package audits"""

from datetime import date

import pytest

from scrutix_engine.domain.detectors import ancillary_services, fee_audits, international, packages, payment_methods
from scrutix_engine.domain.models import AnomalyType, BankConditions, Severity, TransactionType
from scrutix_engine.domain.tariffs import ConditionLookup


def conditions(**tariffs) -> ConditionLookup:
    return ConditionLookup.single(BankConditions(bank_code="BICEC", **tariffs))


# Payment methods

def test_chequebook_above_category_tariff(make_txn, thresholds):
    fee = make_txn(date(2024, 3, 12), -8000, "FRAIS CHEQUIER 25 FORMULES", type=TransactionType.FEE)

    anomalies = payment_methods.detect([fee], conditions(chequebook_fee=5000), thresholds)

    assert [a.amount for a in anomalies] == [3000]
    assert anomalies[0].type == AnomalyType.FEE_ANOMALY
    assert anomalies[0].module == "payment_methods"


def test_repeated_unpaid_items_in_a_month(make_txn, thresholds):
    transactions = [
        make_txn(date(2024, 3, 2), -15000, "FRAIS IMPAYE CHEQUE 0012", type=TransactionType.FEE),
        make_txn(date(2024, 3, 20), -15000, "FRAIS IMPAYE CHEQUE 0047", type=TransactionType.FEE),
    ]

    anomalies = payment_methods.detect(transactions, conditions(), thresholds)

    assert len(anomalies) == 1
    assert anomalies[0].severity == Severity.HIGH
    assert anomalies[0].amount == 0.0
    assert len(anomalies[0].transactions) == 2


def test_international_transfer_left_to_international_audit(make_txn, thresholds):
    fee = make_txn(date(2024, 3, 12), -30000, "FRAIS VIREMENT INTERNATIONAL SWIFT", type=TransactionType.FEE)

    assert payment_methods.detect([fee], conditions(domestic_transfer_fee=2500), thresholds) == []


# International

def test_fx_fee_on_intra_zone_transfer(make_txn, thresholds):
    transactions = [
        make_txn(date(2024, 3, 10), -500000, "VIREMENT VERS GABON FOURNISSEUR", type=TransactionType.TRANSFER),
        make_txn(date(2024, 3, 10), -5000, "FRAIS DE CHANGE", type=TransactionType.FEE),
    ]

    anomalies = international.detect(transactions, conditions(), thresholds)

    assert len(anomalies) == 1
    assert anomalies[0].severity == Severity.HIGH
    assert anomalies[0].amount == 5000
    assert [t.id for t in anomalies[0].transactions] == ["t1", "t2"]


def test_swift_fee_above_tariff(make_txn, thresholds):
    fee = make_txn(date(2024, 3, 12), -25000, "FRAIS VIREMENT INTERNATIONAL", type=TransactionType.FEE)

    anomalies = international.detect([fee], conditions(international_transfer_fee=15000), thresholds)

    assert [a.amount for a in anomalies] == [10000, 0.0]
    assert anomalies[1].evidence[0].expected_value == international.SWIFT_FEE_ALERT


def test_eur_rate_far_from_parity(make_txn, thresholds):
    transfer = make_txn(date(2024, 3, 12), -690000, "VIREMENT EMIS EUR 1000 TAUX 690", type=TransactionType.TRANSFER)

    anomalies = international.detect([transfer], conditions(), thresholds)

    assert len(anomalies) == 1
    assert anomalies[0].severity == Severity.HIGH
    assert anomalies[0].amount == 0.0
    assert anomalies[0].evidence[0].expected_value == pytest.approx(655.957)


def test_supplier_wording_is_not_an_eur_mention(make_txn, thresholds):
    payment = make_txn(date(2024, 3, 12), -120000, "PAIEMENT FOURNISSEUR TAUX 700", type=TransactionType.TRANSFER)

    assert international.detect([payment], conditions(), thresholds) == []


# Ancillary services

def test_online_banking_billed_twice_and_unused(make_txn, thresholds):
    transactions = [
        make_txn(date(2024, 3, 1), -3000, "ABONNEMENT BANQUE EN LIGNE", type=TransactionType.FEE),
        make_txn(date(2024, 3, 20), -3000, "ABONNEMENT BANQUE EN LIGNE", type=TransactionType.FEE),
    ]

    anomalies = ancillary_services.detect(transactions, conditions(online_banking_fee=3000), thresholds)

    assert [a.amount for a in anomalies] == [3000, 0.0]
    assert anomalies[1].severity == Severity.MEDIUM


def test_online_operation_justifies_subscription(make_txn, thresholds):
    transactions = [
        make_txn(date(2024, 3, 1), -3000, "ABONNEMENT BANQUE EN LIGNE", type=TransactionType.FEE),
        make_txn(date(2024, 3, 8), -50000, "VIREMENT MOBILE BANKING", type=TransactionType.TRANSFER),
    ]

    assert ancillary_services.detect(transactions, conditions(online_banking_fee=3000), thresholds) == []


def test_safe_deposit_allowed_twice_a_year(make_txn, thresholds):
    transactions = [
        make_txn(date(2024, month, 10), -60000, "LOCATION COFFRE FORT", type=TransactionType.FEE)
        for month in (1, 5, 9)
    ]

    anomalies = ancillary_services.detect(transactions, conditions(safe_deposit_fee=60000), thresholds)

    assert [a.amount for a in anomalies] == [60000]
    assert [t.id for t in anomalies[0].transactions] == ["t1", "t2", "t3"]


def test_costly_archive_search(make_txn, thresholds):
    fee = make_txn(date(2024, 3, 12), -25000, "FRAIS RECHERCHE DOCUMENTS ARCHIVES", type=TransactionType.FEE)

    anomalies = ancillary_services.detect([fee], conditions(), thresholds)

    assert len(anomalies) == 1
    assert anomalies[0].severity == Severity.MEDIUM
    assert anomalies[0].amount == 0.0


# Packages and insurance

def test_insurance_billed_on_top_of_all_inclusive_offer(make_txn, thresholds):
    transactions = [
        make_txn(date(2024, 3, 1), -10000, "FORFAIT TOUT COMPRIS PME", type=TransactionType.FEE),
        make_txn(date(2024, 3, 15), -3000, "ASSURANCE MOYENS DE PAIEMENT", type=TransactionType.FEE),
    ]

    anomalies = packages.detect(transactions, conditions(), thresholds)

    assert [a.amount for a in anomalies] == [3000]
    assert anomalies[0].severity == Severity.HIGH
    assert [t.id for t in anomalies[0].transactions] == ["t1", "t2"]


def test_package_above_tariff(make_txn, thresholds):
    fee = make_txn(date(2024, 3, 1), -15000, "FRAIS PACKAGE ESSENTIEL", type=TransactionType.FEE)

    anomalies = packages.detect([fee], conditions(package_fee=10000), thresholds)

    assert [a.amount for a in anomalies] == [5000]
    assert anomalies[0].module == "packages"


def test_overdraft_insurance_without_any_interest(make_txn, thresholds):
    transactions = [
        make_txn(date(2024, month, 25), -8000, "ASSURANCE DECOUVERT", type=TransactionType.FEE)
        for month in (1, 2, 3)
    ]

    anomalies = packages.detect(transactions, conditions(), thresholds)

    assert len(anomalies) == 1
    assert anomalies[0].severity == Severity.MEDIUM
    assert anomalies[0].amount == 0.0


def test_package_contribution_increase(make_txn, thresholds):
    transactions = [
        make_txn(date(2024, month, 1), amount, "PACKAGE PRO", type=TransactionType.FEE)
        for month, amount in ((1, -10000), (2, -11000), (3, -14000))
    ]

    anomalies = packages.detect(transactions, conditions(), thresholds)

    assert len(anomalies) == 1
    assert anomalies[0].severity == Severity.HIGH
    assert anomalies[0].amount == 0.0


def test_card_insurance_is_not_a_card_subscription(make_txn, lookup, thresholds):
    transactions = [
        make_txn(date(2024, 1, 10), -5000, "ASSURANCE CARTE VISA", type=TransactionType.FEE),
        make_txn(date(2024, 6, 10), -5000, "ASSURANCE CARTE VISA", type=TransactionType.FEE),
    ]

    assert fee_audits.detect_card_fees(transactions, lookup, thresholds) == []
