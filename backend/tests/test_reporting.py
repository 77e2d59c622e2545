"""
Tests for the operator dashboard and per-user analytics.
"""
import pytest
from datetime import datetime, timedelta, timezone

from conftest import days_from_now
from app.models.db_models import OrderDB, OrderStatus
from app.services.errors import PermissionDenied, ValidationError
from app.services.reporting import operator_dashboard, payable_sign, user_analytics


@pytest.fixture
def book(workflow, actors):
    """
    A: referred, 1500 words due tomorrow, assigned to sw-1   (80.00, paid)
    B: unreferred, 500 words, awaiting payment               (20.00)
    C: referred, 500 words, assigned to sw-2 then refunded   (20.00)
    """
    submit = workflow.submit_order
    a = submit(actors["student"], word_count=1500, deadline=days_from_now(1))["order"]["id"]
    b = submit(actors["lone_student"], word_count=500, deadline=days_from_now(10))["order"]["id"]
    c = submit(actors["student"], word_count=500, deadline=days_from_now(10))["order"]["id"]

    workflow.assign_super_worker(actors["operator"], a, "sw-1")
    workflow.assign_super_worker(actors["operator"], c, "sw-2")
    workflow.transition(actors["operator"], c, OrderStatus.REFUND)
    return {"a": a, "b": b, "c": c}


class TestPayableSign:

    def test_signs(self):
        assert payable_sign(OrderStatus.PAYMENT_APPROVAL) == 0
        assert payable_sign(OrderStatus.IN_PROGRESS) == 1
        assert payable_sign(OrderStatus.COMPLETED) == 1
        assert payable_sign(OrderStatus.DECLINED) == -1
        assert payable_sign(OrderStatus.REFUND) == -1


class TestOperatorDashboard:

    def test_totals_exclude_refunds(self, db, actors, book):
        report = operator_dashboard(db, actors["operator"])

        assert report["total_revenue"] == 100.0
        assert report["total_profit"] == 45.0
        assert report["order_count"] == 2
        assert report["average_profit_per_order"] == 22.5
        assert report["total_platform_fees"] == 1.0
        assert report["total_students"] == 2

    def test_payables(self, db, actors, book):
        report = operator_dashboard(db, actors["operator"])

        # sw-1 is owed 30 on A; sw-2's 10 on C is clawed back
        assert report["to_be_paid_super_workers"] == 20.0
        # 15 on A, minus 5 on refunded C; B has no agent
        assert report["to_be_paid_agents"] == 10.0

    def test_breakdowns(self, db, actors, book):
        report = operator_dashboard(db, actors["operator"])

        assert report["agents"] == [
            {"id": "ag-1", "name": "Arjun Agent", "to_be_paid": 10.0, "orders": 1, "student_count": 1},
        ]
        assert [(r["id"], r["to_be_paid"], r["orders"]) for r in report["super_workers"]] == [
            ("sw-1", 30.0, 1),
            ("sw-2", -10.0, 0),
        ]

    def test_date_window(self, db, actors, book):
        future = datetime.now(timezone.utc) + timedelta(days=1)
        assert operator_dashboard(db, actors["operator"], start=future)["order_count"] == 0
        past = datetime.now(timezone.utc) - timedelta(days=1)
        assert operator_dashboard(db, actors["operator"], start=past)["order_count"] == 2

    def test_empty_book(self, db, actors):
        report = operator_dashboard(db, actors["operator"])
        assert report["order_count"] == 0
        assert report["average_profit_per_order"] == 0.0

    def test_operator_only(self, db, actors):
        with pytest.raises(PermissionDenied):
            operator_dashboard(db, actors["agent"])


# =============================================================================
# TEST: PER-USER ANALYTICS
# =============================================================================

def at(year, month, day):
    return datetime(year, month, day, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def dated_book(db, book):
    """A and B created in March 2026, the refunded C in January."""
    for key, created in (("a", at(2026, 3, 2)), ("b", at(2026, 3, 5)), ("c", at(2026, 1, 20))):
        db.query(OrderDB).filter(OrderDB.id == book[key]).update({OrderDB.created_at: created})
    db.commit()
    return book


QUARTER = {"start": at(2026, 1, 1), "end": at(2026, 3, 31)}


class TestUserAnalytics:

    def test_student_spending_by_day(self, db, actors, dated_book):
        result = user_analytics(db, actors["student"], start=at(2026, 3, 1), end=at(2026, 3, 10))

        assert result["grouping"] == "day"
        assert result["metrics"] == {
            "spending": [{"date": "2026-03-02", "value": 80.0}],
            "submissions": [{"date": "2026-03-02", "value": 1}],
        }

    def test_student_refunds_left_out(self, db, actors, dated_book):
        result = user_analytics(db, actors["student"], **QUARTER)

        assert result["grouping"] == "month"
        assert result["metrics"]["spending"] == [{"date": "2026-03", "value": 80.0}]
        assert result["metrics"]["submissions"] == [{"date": "2026-03", "value": 1}]

    def test_agent_commission_is_clawed_back_on_refund(self, db, actors, dated_book):
        metrics = user_analytics(db, actors["agent"], **QUARTER)["metrics"]

        assert metrics["commission"] == [
            {"date": "2026-01", "value": -5.0},
            {"date": "2026-03", "value": 15.0},
        ]
        assert metrics["orders"] == [{"date": "2026-03", "value": 1}]

    def test_super_worker_earnings(self, db, actors, users, dated_book):
        assert user_analytics(db, actors["super_worker"], **QUARTER)["metrics"] == {
            "earnings": [{"date": "2026-03", "value": 30.0}],
            "assignments": [{"date": "2026-03", "value": 1}],
        }
        refunded = user_analytics(db, actors["super_worker_2"], **QUARTER)["metrics"]
        assert refunded == {"earnings": [{"date": "2026-01", "value": -10.0}], "assignments": []}

    def test_operator_revenue(self, db, actors, dated_book):
        metrics = user_analytics(db, actors["operator"], **QUARTER)["metrics"]

        assert metrics["revenue"] == [{"date": "2026-03", "value": 100.0}]
        assert metrics["orders"] == [{"date": "2026-03", "value": 2}]

    def test_workers_have_no_metrics(self, db, actors, dated_book):
        assert user_analytics(db, actors["worker"], **QUARTER)["metrics"] == {}

    def test_open_start_groups_by_month(self, db, actors, dated_book):
        result = user_analytics(db, actors["operator"], now=at(2026, 4, 1))
        assert result["grouping"] == "month"
        assert [point["date"] for point in result["metrics"]["orders"]] == ["2026-03"]

    def test_window_must_be_ordered(self, db, actors):
        with pytest.raises(ValidationError):
            user_analytics(db, actors["student"], start=at(2026, 3, 2), end=at(2026, 3, 1))
