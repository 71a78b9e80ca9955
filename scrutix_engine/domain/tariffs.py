"""Tariff resolution - selects the condition grid applicable to a bank on a date"""

import logging
from datetime import date
from typing import Dict, Iterable, List

from scrutix_engine.domain.exceptions import MissingConditionsError, OverlappingGridError
from scrutix_engine.domain.models import (
    BankConditions,
    ConditionGrid,
    FeeSchedule,
    GridStatus,
    InterestRate,
)

logger = logging.getLogger(__name__)


def resolve_grid(
    grids: Iterable[ConditionGrid], bank_code: str, on_date: date
) -> ConditionGrid | None:
    """
    Pick the grid in force for a bank on a given date.

    A grid qualifies when it is not a draft and on_date falls inside
    [effective_date, expiration_date). Among qualifying grids the most recent
    effective_date wins; equal dates fall back to the greatest grid id.
    """
    candidates = [
        grid
        for grid in grids
        if grid.bank_code == bank_code
        and grid.status != GridStatus.DRAFT
        and grid.is_effective_on(on_date)
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda g: (g.effective_date, g.id))


class TariffResolver:
    """Read-only registry of condition grids with write-time overlap checks"""

    def __init__(self, grids: Iterable[ConditionGrid] | None = None):
        self._grids: Dict[str, List[ConditionGrid]] = {}
        for grid in grids or []:
            self.register(grid)

    def register(self, grid: ConditionGrid) -> None:
        """
        Add a grid to the registry.

        Raises:
            OverlappingGridError: If a non-draft grid of the same bank
                overlaps the new one's validity window
        """
        existing = self._grids.setdefault(grid.bank_code, [])
        if grid.status != GridStatus.DRAFT:
            for other in existing:
                if other.status != GridStatus.DRAFT and other.overlaps(grid):
                    raise OverlappingGridError(grid.bank_code, grid.id, other.id)
        existing.append(grid)

    def bank_codes(self) -> List[str]:
        return list(self._grids)

    def grids_for(self, bank_code: str) -> List[ConditionGrid]:
        return list(self._grids.get(bank_code, []))

    def resolve(self, bank_code: str, on_date: date) -> ConditionGrid | None:
        return resolve_grid(self._grids.get(bank_code, []), bank_code, on_date)


def default_conditions(bank_code: str) -> BankConditions:
    """Standard CEMAC retail tariff used when a bank has no known schedule"""
    return BankConditions(
        bank_code=bank_code,
        bank_name="Conditions standard CEMAC",
        fees=[
            FeeSchedule(code="TDC", name="Tenue de compte", amount=5000),
            FeeSchedule(code="VIRN", name="Virement national", amount=2500),
            FeeSchedule(code="VIRI", name="Virement international", amount=15000),
            FeeSchedule(code="CARTE", name="Cotisation carte", amount=25000),
            FeeSchedule(code="DAB", name="Retrait DAB hors réseau", amount=500),
            FeeSchedule(code="SMS", name="Alertes SMS", amount=1000),
            FeeSchedule(code="RELEVE", name="Relevé de compte", amount=1000),
        ],
        interest_rates=[
            InterestRate(type="overdraft", rate=0.12),
            InterestRate(type="unauthorized", rate=0.18),
        ],
        account_maintenance_fee=5000,
        statement_fee=1000,
        card_annual_fee=25000,
        atm_withdrawal_fee=500,
        chequebook_fee=5000,
        cheque_opposition_fee=10000,
        unpaid_item_fee=15000,
        domestic_transfer_fee=2500,
        international_transfer_fee=15000,
        fx_commission_fee=5000,
        online_banking_fee=3000,
        sms_alert_fee=1000,
        certificate_fee=2000,
        safe_deposit_fee=60000,
        package_fee=10000,
        card_insurance_fee=5000,
    )


class ConditionLookup:
    """
    Conditions applicable to a transaction, with the fallback chain
    resolved grid -> bank's current conditions -> standard tariff.
    """

    def __init__(
        self,
        resolver: TariffResolver | None = None,
        current_conditions: Iterable[BankConditions] | None = None,
        allow_default: bool = True,
    ):
        self.resolver = resolver or TariffResolver()
        self.current = {c.bank_code: c for c in current_conditions or []}
        self.allow_default = allow_default

    @classmethod
    def single(cls, conditions: BankConditions) -> "ConditionLookup":
        return cls(current_conditions=[conditions])

    @property
    def bank_codes(self) -> List[str]:
        return sorted(set(self.current) | set(self.resolver.bank_codes()))

    def for_bank(self, bank_code: str, on_date: date) -> BankConditions:
        """
        Raises:
            MissingConditionsError: When nothing resolves and the standard
                tariff is disabled
        """
        grid = self.resolver.resolve(bank_code, on_date)
        if grid is not None:
            return grid.conditions

        if bank_code in self.current:
            return self.current[bank_code]

        if not self.allow_default:
            raise MissingConditionsError(
                f"No conditions for bank {bank_code} on {on_date.isoformat()}"
            )

        logger.debug(
            "Falling back to standard tariff",
            extra={"bank_code": bank_code, "on_date": on_date.isoformat()},
        )
        return default_conditions(bank_code)
