"""Shared classification helpers for rule-based detectors"""

import re
import unicodedata
from typing import Iterable, List

from scrutix_engine.domain.models import BankConditions, FeeSchedule, Transaction, TransactionType
from scrutix_engine.utils.similarity import normalize_description

FEE_KEYWORDS = (
    "frais", "commission", "taxe", "prélèvement", "prelevement", "redevance",
    "cotisation", "abonnement", "fee", "charge", "tenue", "agios",
)

SERVICE_KEYWORDS = (
    "virement", "retrait", "dépôt", "depot", "carte", "chèque", "cheque",
    "transfer", "paiement", "achat", "versement",
)

_INTEREST_WORDING = re.compile(r"agios|int[ée]r[êe]ts?\s+d[ée]biteurs?|int[ée]r[êe]ts?\s+sur\s+d[ée]couvert")

CASH_KEYWORDS = ("especes", "espèces", "cash", "retrait", "versement")


def is_fee_like(txn: Transaction) -> bool:
    """Debit that reads as a bank charge"""
    if not txn.is_debit:
        return False
    if txn.type == TransactionType.FEE:
        return True
    description = txn.description.lower()
    return any(keyword in description for keyword in FEE_KEYWORDS)


def is_interest_charge(txn: Transaction) -> bool:
    if not txn.is_debit:
        return False
    return txn.type == TransactionType.INTEREST or bool(
        _INTEREST_WORDING.search(txn.description.lower())
    )


def is_service_operation(txn: Transaction) -> bool:
    """Operation a fee could legitimately relate to"""
    if is_fee_like(txn):
        return False
    if txn.type in (TransactionType.TRANSFER, TransactionType.CARD, TransactionType.ATM, TransactionType.CHECK):
        return True
    description = txn.description.lower()
    return any(keyword in description for keyword in SERVICE_KEYWORDS)


def is_cash_operation(txn: Transaction) -> bool:
    if txn.type == TransactionType.ATM:
        return True
    description = txn.description.lower()
    return any(keyword in description for keyword in CASH_KEYWORDS)


def folded(text: str) -> str:
    """Lowercase without accents: 'Chèque impayé' -> 'cheque impaye'"""
    return "".join(c for c in unicodedata.normalize("NFKD", text.lower()) if not unicodedata.combining(c))


def format_fcfa(amount: float) -> str:
    """French-style thousands separator: 15000 -> '15 000 FCFA'"""
    return f"{round(amount):,}".replace(",", " ") + " FCFA"


def total_abs(transactions: Iterable[Transaction]) -> float:
    return sum(abs(t.amount) for t in transactions)


def sort_chronologically(transactions: Iterable[Transaction]) -> List[Transaction]:
    """Order-independent: ties on the same day are broken by id"""
    return sorted(transactions, key=lambda t: (t.date, t.id))


def sort_by_date(transactions: Iterable[Transaction]) -> List[Transaction]:
    """Statement order: stable on date, so same-day lines keep their input order"""
    return sorted(transactions, key=lambda t: t.date)


def match_contract_fee(txn: Transaction, conditions: BankConditions) -> FeeSchedule | None:
    """Fee schedule line a transaction refers to, by code or by wording"""
    if txn.reference:
        for fee in conditions.fees:
            if fee.code.upper() == txn.reference.upper():
                return fee

    description = normalize_description(txn.description)
    for fee in conditions.fees:
        name = normalize_description(fee.name)
        if name and name in description:
            return fee
    return None
