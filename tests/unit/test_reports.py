"""Unit tests for report generation"""

import pytest
from decimal import Decimal
from finplan_engine.domain.exceptions import OperationCancelledError
from finplan_engine.domain.models import ProjectionType, ReportType, Scenario
from finplan_engine.domain.reports import (
    FINANCING,
    INVESTING,
    OPERATING,
    BalanceSheetReport,
    ReportGenerator,
    cash_flow_bucket,
)
from finplan_engine.utils.cancellation import CancellationToken


@pytest.fixture
def funded_items(plan_id, startup_items, make_item):
    """Startup items plus equipment bought with a loan and an equity round"""
    return startup_items + [
        make_item(plan_id, ProjectionType.ASSET, "Equipment", "2000", month=1),
        make_item(plan_id, ProjectionType.LIABILITY, "Loan", "1500", month=1),
        make_item(plan_id, ProjectionType.EQUITY, "Seed Round", "1000", month=1),
    ]


def test_profit_and_loss(plan_id, startup_items, list_source):
    report = ReportGenerator(list_source(startup_items)).profit_loss(plan_id, currency_code="USD")

    assert report.revenue.total == Decimal("3600.00")
    assert report.cost_of_goods_sold.total == Decimal("1500.00")
    assert report.operating_expenses.total == Decimal("1900.00")
    assert report.gross_profit == Decimal("2100.00")
    assert report.net_income == Decimal("200.00")
    assert (report.header.first_period.month, report.header.last_period.month) == (1, 4)


def test_cash_flow_buckets(plan_id, funded_items, list_source):
    report = ReportGenerator(list_source(funded_items)).cash_flow(plan_id)

    assert report.operating.total == Decimal("200.00")
    assert report.investing.total == Decimal("-2000.00")
    assert report.financing.total == Decimal("2500.00")
    assert report.closing_cash == Decimal("700.00")
    assert [p.net_change for p in report.periods] == [Decimal(v) for v in ("-500", "300", "400", "500")]


def test_cash_flow_bucket_tags(plan_id, make_item):
    capex = make_item(plan_id, ProjectionType.EXPENSE, "capex", "10")
    tagged = make_item(plan_id, ProjectionType.CASH_FLOW, "Other", "-10", sub_category="Investing")
    recurring = make_item(plan_id, ProjectionType.CASH_FLOW, "Other", "-10", sub_category="Investing", is_recurring=True)

    assert cash_flow_bucket(capex) == INVESTING
    assert cash_flow_bucket(tagged) == INVESTING
    assert cash_flow_bucket(recurring) == OPERATING
    assert cash_flow_bucket(make_item(plan_id, ProjectionType.EXPENSE, "Loan", "10")) == FINANCING


def test_balance_sheet_is_partial_and_reconciles(plan_id, funded_items, list_source):
    report = ReportGenerator(list_source(funded_items)).balance_sheet(plan_id)

    assert isinstance(report, BalanceSheetReport)
    assert report.is_partial
    assert report.limitations
    lines = {line.label: line.amount for line in report.assets.lines}
    assert lines == {"Cash": Decimal("700.00"), "Equipment": Decimal("2000.00")}
    assert report.liabilities.total == Decimal("1500.00")
    # Seed round 1000 plus retained earnings 200
    assert report.equity.total == Decimal("1200.00")
    assert report.unreconciled == Decimal("0")


def test_balance_sheet_adds_same_named_lines(plan_id, make_item, list_source):
    """An Asset called Cash adds to the derived cash line instead of replacing it"""
    items = [
        make_item(plan_id, ProjectionType.EQUITY, "Founder Capital", "5000"),
        make_item(plan_id, ProjectionType.ASSET, "Cash", "100"),
    ]

    report = ReportGenerator(list_source(items)).balance_sheet(plan_id)

    # Derived cash 4900 plus the 100 asset
    assert [(line.label, line.amount) for line in report.assets.lines] == [("Cash", Decimal("5000.00"))]
    assert report.total_assets == Decimal("5000.00")
    assert report.unreconciled == Decimal("0")


def test_balance_sheet_adds_equity_named_retained_earnings(plan_id, startup_items, make_item, list_source):
    items = startup_items + [make_item(plan_id, ProjectionType.EQUITY, "Retained Earnings", "300")]

    report = ReportGenerator(list_source(items)).balance_sheet(plan_id)

    lines = {line.label: line.amount for line in report.equity.lines}
    assert lines == {"Retained Earnings": Decimal("500.00")}
    assert report.unreconciled == Decimal("0")


def test_rounds_to_minor_units_only_in_report(plan_id, make_item, list_source):
    items = [make_item(plan_id, ProjectionType.REVENUE, "Revenue", "1000.125")]
    generator = ReportGenerator(list_source(items))

    assert generator.profit_loss(plan_id, decimal_places=2).revenue.total == Decimal("1000.12")
    assert generator.profit_loss(plan_id, decimal_places=0).revenue.total == Decimal("1000")
    assert items[0].base_amount == Decimal("1000.125")


def test_duplicates_listed_in_header(plan_id, make_item, list_source):
    items = [
        make_item(plan_id, ProjectionType.REVENUE, "Revenue", "100"),
        make_item(plan_id, ProjectionType.REVENUE, "Revenue", "50"),
    ]
    report = ReportGenerator(list_source(items)).profit_loss(plan_id)

    assert len(report.header.duplicate_keys) == 1
    assert report.revenue.total == Decimal("150.00")


def test_cancelled_report_returns_nothing(plan_id, startup_items, list_source):
    token = CancellationToken()
    token.cancel()
    generator = ReportGenerator(list_source(startup_items), cancel_check_interval=1)

    with pytest.raises(OperationCancelledError):
        generator.generate(plan_id, ReportType.CASH_FLOW, Scenario.REALISTIC, token=token)


def test_timed_out_report(plan_id, startup_items, list_source):
    with pytest.raises(OperationCancelledError, match="timed out"):
        ReportGenerator(list_source(startup_items)).generate(
            plan_id, "profit_loss", token=CancellationToken(timeout_seconds=0)
        )
