"""Unit tests for tariff grid resolution"""

import pytest
from datetime import date

from scrutix_engine.domain.exceptions import MissingConditionsError, OverlappingGridError
from scrutix_engine.domain.models import BankConditions, ConditionGrid, FeeSchedule, GridStatus
from scrutix_engine.domain.tariffs import ConditionLookup, TariffResolver, default_conditions, resolve_grid


def make_grid(
    grid_id: str,
    effective: date,
    expiration: date | None = None,
    status: GridStatus = GridStatus.ACTIVE,
    bank_code: str = "SGC",
    tdc: float = 5000,
) -> ConditionGrid:
    return ConditionGrid(
        id=grid_id,
        bank_code=bank_code,
        name=f"Grille {grid_id}",
        version=grid_id,
        effective_date=effective,
        expiration_date=expiration,
        status=status,
        conditions=BankConditions(
            bank_code=bank_code,
            fees=[FeeSchedule(code="TDC", name="Tenue de compte", amount=tdc)],
        ),
    )


def test_resolve_picks_grid_inside_window():
    grids = [
        make_grid("2023", date(2023, 1, 1), date(2024, 1, 1)),
        make_grid("2024", date(2024, 1, 1)),
    ]

    assert resolve_grid(grids, "SGC", date(2023, 6, 15)).id == "2023"
    assert resolve_grid(grids, "SGC", date(2024, 1, 1)).id == "2024"


def test_resolve_expiration_is_exclusive():
    grids = [make_grid("2023", date(2023, 1, 1), date(2024, 1, 1))]

    assert resolve_grid(grids, "SGC", date(2023, 12, 31)) is not None
    assert resolve_grid(grids, "SGC", date(2024, 1, 1)) is None


def test_resolve_ignores_drafts_and_other_banks():
    grids = [
        make_grid("draft", date(2024, 3, 1), status=GridStatus.DRAFT),
        make_grid("other", date(2024, 3, 1), bank_code="UBA"),
        make_grid("active", date(2024, 1, 1)),
    ]

    assert resolve_grid(grids, "SGC", date(2024, 6, 1)).id == "active"


def test_resolve_none_before_first_effective_date():
    grids = [make_grid("2024", date(2024, 1, 1))]

    assert resolve_grid(grids, "SGC", date(2023, 12, 31)) is None


def test_resolve_latest_effective_date_wins_regardless_of_order():
    """Overlapping grids built without registration: most recent wins"""
    older = make_grid("a", date(2024, 1, 1))
    newer = make_grid("b", date(2024, 4, 1))

    assert resolve_grid([older, newer], "SGC", date(2024, 5, 1)).id == "b"
    assert resolve_grid([newer, older], "SGC", date(2024, 5, 1)).id == "b"


def test_archived_grid_still_applies_to_its_period():
    grids = [make_grid("old", date(2022, 1, 1), date(2023, 1, 1), status=GridStatus.ARCHIVED)]

    assert resolve_grid(grids, "SGC", date(2022, 7, 1)).id == "old"


def test_register_rejects_overlapping_active_grids():
    resolver = TariffResolver([make_grid("2024", date(2024, 1, 1))])

    with pytest.raises(OverlappingGridError) as exc_info:
        resolver.register(make_grid("2024b", date(2024, 6, 1)))

    assert exc_info.value.existing_id == "2024"


def test_register_accepts_drafts_and_adjacent_windows():
    resolver = TariffResolver(
        [
            make_grid("2023", date(2023, 1, 1), date(2024, 1, 1)),
            make_grid("2024", date(2024, 1, 1)),
        ]
    )
    resolver.register(make_grid("next", date(2024, 6, 1), status=GridStatus.DRAFT))

    assert len(resolver.grids_for("SGC")) == 3
    assert resolver.resolve("SGC", date(2024, 7, 1)).id == "2024"


def test_lookup_fallback_chain():
    current = BankConditions(bank_code="UBA", bank_name="UBA courant")
    lookup = ConditionLookup(
        resolver=TariffResolver([make_grid("2024", date(2024, 1, 1), tdc=7000)]),
        current_conditions=[current],
    )

    # Grid, then current conditions, then standard tariff
    assert lookup.for_bank("SGC", date(2024, 2, 1)).find_fee("TDC").amount == 7000
    assert lookup.for_bank("UBA", date(2024, 2, 1)) is current
    assert lookup.for_bank("ECOBANK", date(2024, 2, 1)) == default_conditions("ECOBANK")


def test_lookup_without_default_raises():
    lookup = ConditionLookup(allow_default=False)

    with pytest.raises(MissingConditionsError):
        lookup.for_bank("SGC", date(2024, 2, 1))


def test_debit_rate_prefers_overdraft():
    conditions = default_conditions("SGC")

    assert conditions.debit_rate().type == "overdraft"
    assert conditions.debit_rate().rate == 0.12
