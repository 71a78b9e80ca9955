"""Pytest fixtures for testing"""

import itertools
import pytest
from datetime import date, timedelta
from typing import Callable, List

from scrutix_engine.domain.models import (
    BankConditions,
    DetectionThresholds,
    FeeSchedule,
    InterestRate,
    Transaction,
    TransactionType,
)
from scrutix_engine.domain.tariffs import ConditionLookup


@pytest.fixture
def make_txn() -> Callable[..., Transaction]:
    """Transaction factory with sequential ids and audit-friendly defaults"""
    counter = itertools.count(1)

    def factory(
        day: date,
        amount: float,
        description: str = "Opération",
        balance: float = 1_000_000,
        type: TransactionType = TransactionType.DEBIT,
        client_id: str = "client-1",
        bank_code: str = "BICEC",
        reference: str | None = None,
        account_number: str | None = "0001",
        value_date: date | None = None,
        id: str | None = None,
    ) -> Transaction:
        return Transaction(
            id=id or f"t{next(counter)}",
            date=day,
            description=description,
            amount=amount,
            balance=balance,
            type=type,
            client_id=client_id,
            bank_code=bank_code,
            reference=reference,
            account_number=account_number,
            value_date=value_date,
        )

    return factory


@pytest.fixture
def thresholds() -> DetectionThresholds:
    return DetectionThresholds()


@pytest.fixture
def bicec_conditions() -> BankConditions:
    """Contractual schedule of the bank used across tests"""
    return BankConditions(
        bank_code="BICEC",
        bank_name="BICEC",
        fees=[
            FeeSchedule(code="TDC", name="Frais de tenue de compte", amount=15000),
            FeeSchedule(code="VIRN", name="Virement national", amount=2500),
            FeeSchedule(code="SMS", name="Alertes SMS", amount=1000),
            FeeSchedule(code="CARTE", name="Cotisation carte", amount=25000),
        ],
        interest_rates=[InterestRate(type="overdraft", rate=0.12, max_amount=100_000)],
        account_maintenance_fee=15000,
        statement_fee=1000,
        card_annual_fee=25000,
        atm_withdrawal_fee=500,
    )


@pytest.fixture
def lookup(bicec_conditions: BankConditions) -> ConditionLookup:
    return ConditionLookup.single(bicec_conditions)


@pytest.fixture
def sample_transactions(make_txn) -> List[Transaction]:
    """Three months of a small business account with recurring fees"""
    start = date(2024, 1, 2)
    transactions = []
    balance = 2_000_000

    for month in range(3):
        month_start = start + timedelta(days=month * 31)
        balance += 1_500_000
        transactions.append(
            make_txn(month_start, 1_500_000, "VIREMENT RECU CLIENT SOCOCAM", balance, TransactionType.CREDIT,
                     reference="VIR8812")
        )
        for week in range(4):
            balance -= 120_000
            transactions.append(
                make_txn(month_start + timedelta(days=week * 7 + 1), -120_000, "PAIEMENT FOURNISSEUR CIMENCAM",
                         balance, TransactionType.TRANSFER, reference=f"PF{month}{week}")
            )
        balance -= 15000
        transactions.append(
            make_txn(month_start + timedelta(days=25), -15000, "FRAIS DE TENUE DE COMPTE", balance,
                     TransactionType.FEE, reference="TDC")
        )
    return transactions
