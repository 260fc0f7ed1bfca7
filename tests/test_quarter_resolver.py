from datetime import date

import pytest

from models import LedgerRow
from services import QuarterNotFound, QuarterResolver

ADMIN = "Administrative costs"


def test_resolves_by_stored_date_range(session, seed) -> None:
    ids = seed(session, 2025, {ADMIN: [(100, 0, 100)] * 4})
    resolver = QuarterResolver(session, calendar_fallback=False)

    assert resolver.resolve(2025, ADMIN, None, date(2025, 1, 1)).id == ids[(ADMIN, "Q1")]
    assert resolver.resolve(2025, ADMIN, None, date(2025, 6, 30)).id == ids[(ADMIN, "Q2")]
    assert resolver.resolve(2025, ADMIN, None, date(2025, 12, 31)).id == ids[(ADMIN, "Q4")]


def test_stored_ranges_win_over_calendar_quarters(session, seed) -> None:
    ids = seed(session, 2025, {ADMIN: [(100, 0, 100)] * 4})
    # Fiscal year where Q1 runs into April.
    q1 = session.get(LedgerRow, ids[(ADMIN, "Q1")])
    q2 = session.get(LedgerRow, ids[(ADMIN, "Q2")])
    q1.end_date = date(2025, 4, 15)
    q2.start_date = date(2025, 4, 16)
    session.commit()

    row = QuarterResolver(session, calendar_fallback=True).resolve(
        2025, ADMIN, None, date(2025, 4, 10)
    )
    assert row.period_name == "Q1"


def test_cluster_only_sees_its_own_rows(session, seed) -> None:
    seed(session, 2025, {ADMIN: [(100, 0, 100)] * 4}, cluster="Adama")
    hawassa = seed(session, 2025, {ADMIN: [(100, 0, 100)] * 4}, cluster="Hawassa")

    row = QuarterResolver(session, calendar_fallback=False).resolve(
        2025, ADMIN, "Hawassa", date(2025, 8, 8)
    )
    assert row.id == hawassa[(ADMIN, "Q3")]
    assert row.cluster == "Hawassa"


def test_unknown_date_raises_with_detail(session, seed) -> None:
    seed(session, 2025, {ADMIN: [(100, 0, 100)] * 4}, cluster="Adama")

    with pytest.raises(QuarterNotFound) as excinfo:
        QuarterResolver(session, calendar_fallback=False).resolve(
            2024, ADMIN, "Adama", date(2024, 3, 1)
        )
    assert excinfo.value.message == "No budget period found for the transaction date"
    assert excinfo.value.status_code == 404
    assert "cluster Adama" in excinfo.value.debug


def test_calendar_fallback_only_when_enabled(session, seed) -> None:
    ids = seed(session, 2025, {ADMIN: [(100, 0, 100)] * 4})
    q3 = session.get(LedgerRow, ids[(ADMIN, "Q3")])
    q3.start_date = None
    q3.end_date = None
    session.commit()

    with pytest.raises(QuarterNotFound):
        QuarterResolver(session, calendar_fallback=False).resolve(
            2025, ADMIN, None, date(2025, 9, 1)
        )
    row = QuarterResolver(session, calendar_fallback=True).resolve(
        2025, ADMIN, None, date(2025, 9, 1)
    )
    assert row.id == ids[(ADMIN, "Q3")]


def test_annual_and_total_rows_are_never_matched(session, seed) -> None:
    ids = seed(session, 2025, {ADMIN: [(100, 0, 100)] * 4})
    annual = session.get(LedgerRow, ids[(ADMIN, "Annual Total")])
    annual.start_date = date(2025, 1, 1)
    annual.end_date = date(2025, 12, 31)
    for period in ("Q1", "Q2", "Q3", "Q4"):
        session.delete(session.get(LedgerRow, ids[(ADMIN, period)]))
    session.commit()

    with pytest.raises(QuarterNotFound):
        QuarterResolver(session, calendar_fallback=False).resolve(
            2025, ADMIN, None, date(2025, 5, 5)
        )
