import uuid
from datetime import date, datetime, timedelta, timezone

import pytest

from paneltrack.core.exceptions import NotFoundError, StateConflictError
from paneltrack.db_types import utc_now
from paneltrack.models.alert import AlertSeverity, AlertStatus, AlertType
from paneltrack.models.manufacturing_order import MOStatus
from paneltrack.schemas.panel import PanelRegister
from paneltrack.schemas.progress import ProgressSnapshot, StationMetrics, StatusCounts
from paneltrack.services.event_publisher import ALERT_RAISED, ALERT_RESOLVED
from paneltrack.services.manufacturing_order_service import ManufacturingOrderService
from paneltrack.services.mo_alert_service import AlertThresholds, MOAlertService, derive_alert_conditions
from paneltrack.services.panel_service import PanelService

TODAY = date(2025, 6, 1)
THRESHOLDS = AlertThresholds()


def snapshot(**overrides):
    values = {
        "mo_id": uuid.uuid4(),
        "order_number": "MO-2025-0007",
        "status": MOStatus.IN_PROGRESS.value,
        "panel_type": "60",
        "line_number": 1,
        "quantity": 500,
        "panels_registered": 300,
        "panels_completed": 250,
        "panels_failed": 5,
        "panels_remaining": 250,
        "counts": StatusCounts(completed=250, failed=5, in_progress=45),
        "stations": [
            StationMetrics(station_number=n, station_name=f"Station {n}", queue=2, avg_dwell_minutes=4.0)
            for n in (1, 2, 3, 4)
        ],
        "percent_complete": 50.0,
        "failure_rate_percent": 1.67,
        "on_time_likelihood": 100,
        "days_remaining": 10,
        "computed_at": datetime(2025, 6, 1, 8, 0, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return ProgressSnapshot(**values)


def conditions_for(end_date=TODAY + timedelta(days=10), **overrides):
    return derive_alert_conditions(snapshot(**overrides), THRESHOLDS, end_date, TODAY)


class TestDeriveConditions:
    def test_healthy_order_has_no_conditions(self):
        assert conditions_for() == {}

    def test_panels_remaining(self):
        conditions = conditions_for(panels_remaining=50)

        condition = conditions[AlertType.PANELS_REMAINING]
        assert condition.severity == AlertSeverity.WARNING
        assert condition.current_value == 50
        assert "Only 50 panels remaining" in condition.message
        assert AlertType.PANELS_REMAINING not in conditions_for(panels_remaining=51)

    def test_low_progress_only_while_in_progress(self):
        assert AlertType.LOW_PROGRESS in conditions_for(percent_complete=24.9)
        assert AlertType.LOW_PROGRESS not in conditions_for(percent_complete=25.0)
        assert AlertType.LOW_PROGRESS not in conditions_for(percent_complete=0.0, status=MOStatus.PENDING.value)

    def test_high_failure_rate_is_critical(self):
        condition = conditions_for(failure_rate_percent=12.5)[AlertType.HIGH_FAILURE_RATE]
        assert condition.severity == AlertSeverity.CRITICAL
        assert AlertType.HIGH_FAILURE_RATE not in conditions_for(failure_rate_percent=10.0)

    def test_single_bottleneck_alert_names_worst_station(self):
        stations = [
            StationMetrics(station_number=1, station_name="Assembly & EL", queue=7),
            StationMetrics(station_number=2, station_name="Framing", queue=11),
            StationMetrics(station_number=3, station_name="Junction Box", queue=1),
            StationMetrics(station_number=4, station_name="Performance & Final", queue=0),
        ]
        condition = conditions_for(stations=stations)[AlertType.STATION_BOTTLENECK]

        assert condition.station_number == 2
        assert condition.current_value == 11
        assert condition.context == {"stations": {"1": 7, "2": 11}}
        assert "Framing" in condition.message

    def test_slow_station(self):
        stations = [
            StationMetrics(station_number=n, station_name=f"Station {n}", avg_dwell_minutes=dwell)
            for n, dwell in ((1, 4.0), (2, 12.5), (3, None), (4, 10.0))
        ]
        condition = conditions_for(stations=stations)[AlertType.SLOW_STATION]
        assert condition.station_number == 2
        assert "12.5 minutes" in condition.message

    def test_ready_for_completion(self):
        conditions = conditions_for(panels_remaining=0, percent_complete=100.0)
        assert set(conditions) == {AlertType.READY_FOR_COMPLETION}

    def test_delayed_order(self):
        condition = conditions_for(end_date=TODAY - timedelta(days=3))[AlertType.MO_DELAYED]
        assert condition.current_value == 3
        assert condition.severity == AlertSeverity.CRITICAL

    @pytest.mark.parametrize("status", [MOStatus.COMPLETED.value, MOStatus.CANCELLED.value])
    def test_closed_orders_raise_nothing(self, status):
        assert conditions_for(status=status, panels_remaining=3, failure_rate_percent=50.0) == {}


@pytest.fixture
def alerts(db_session, rules):
    return MOAlertService(db_session, thresholds=AlertThresholds(), rules=rules)


@pytest.fixture
async def started_mo(db_session, rules, mo_factory, barcode_for):
    """An IN_PROGRESS order at 0%: both panels_remaining and low_progress hold."""
    mo = await mo_factory(quantity=5)
    await PanelService(db_session, rules).register_panel(
        PanelRegister(mo_id=mo.id, registered_by="op-1", barcode=barcode_for(1))
    )
    return mo


def types_of(alerts):
    return sorted(a.alert_type for a in alerts)


class TestEvaluation:
    async def test_raises_once_per_type(self, alerts, started_mo, publisher):
        raised_events = []
        publisher.subscribe(ALERT_RAISED, raised_events.append)

        first = await alerts.evaluate_alerts(started_mo.id)
        assert types_of(first.raised) == [AlertType.LOW_PROGRESS.value, AlertType.PANELS_REMAINING.value]
        assert len(raised_events) == 2

        second = await alerts.evaluate_alerts(started_mo.id)
        assert second.raised == []
        assert types_of(second.active) == types_of(first.raised)

        items, total = await alerts.list_alerts(mo_id=started_mo.id)
        assert total == 2

    async def test_cleared_condition_is_auto_resolved(self, db_session, rules, alerts, started_mo, publisher):
        resolved_events = []
        publisher.subscribe(ALERT_RESOLVED, resolved_events.append)
        await alerts.evaluate_alerts(started_mo.id)

        await ManufacturingOrderService(db_session, rules).change_status(started_mo.id, MOStatus.ON_HOLD, "sup-1")
        evaluation = await alerts.evaluate_alerts(started_mo.id)

        assert types_of(evaluation.resolved) == [AlertType.LOW_PROGRESS.value]
        resolved = evaluation.resolved[0]
        assert resolved.status == AlertStatus.RESOLVED.value
        assert resolved.auto_resolved is True
        assert resolved.resolved_by == "system"
        assert types_of(evaluation.active) == [AlertType.PANELS_REMAINING.value]
        assert [e.payload["alert_type"] for e in resolved_events] == [AlertType.LOW_PROGRESS.value]

    async def test_resolved_alert_is_not_reraised_inside_window(self, alerts, started_mo):
        first = await alerts.evaluate_alerts(started_mo.id)
        low = next(a for a in first.raised if a.alert_type == AlertType.LOW_PROGRESS.value)
        await alerts.resolve_alert(low.id, "sup-1", "known slow start")

        again = await alerts.evaluate_alerts(started_mo.id)
        assert again.raised == []

        later = await alerts.evaluate_alerts(started_mo.id, now=utc_now() + timedelta(hours=1))
        assert types_of(later.raised) == [AlertType.LOW_PROGRESS.value]

    async def test_unknown_order(self, alerts):
        with pytest.raises(NotFoundError):
            await alerts.evaluate_alerts(uuid.uuid4())


class TestOperatorActions:
    async def test_acknowledge(self, alerts, started_mo):
        alert = (await alerts.evaluate_alerts(started_mo.id)).raised[0]

        acknowledged = await alerts.acknowledge_alert(alert.id, "sup-1", "looking into it")
        assert acknowledged.status == AlertStatus.ACKNOWLEDGED.value
        assert acknowledged.acknowledged_by == "sup-1"

        with pytest.raises(StateConflictError) as exc_info:
            await alerts.acknowledge_alert(alert.id, "sup-2")
        assert exc_info.value.code == "ALERT_ALREADY_ACKNOWLEDGED"

    async def test_second_resolve_is_rejected(self, alerts, started_mo):
        alert = (await alerts.evaluate_alerts(started_mo.id)).raised[0]

        resolved = await alerts.resolve_alert(alert.id, "sup-1")
        assert resolved.status == AlertStatus.RESOLVED.value
        assert resolved.auto_resolved is False

        with pytest.raises(StateConflictError) as exc_info:
            await alerts.resolve_alert(alert.id, "sup-1")
        assert exc_info.value.code == "ALERT_ALREADY_RESOLVED"

    async def test_suppressed_alert_cannot_be_resolved(self, alerts, started_mo):
        alert = (await alerts.evaluate_alerts(started_mo.id)).raised[0]

        suppressed = await alerts.suppress_alert(alert.id, "sup-1", "expected during ramp-up")
        assert suppressed.status == AlertStatus.SUPPRESSED.value

        with pytest.raises(StateConflictError) as exc_info:
            await alerts.resolve_alert(alert.id, "sup-1")
        assert exc_info.value.code == "ALERT_SUPPRESSED"

    async def test_unknown_alert(self, alerts):
        with pytest.raises(NotFoundError):
            await alerts.acknowledge_alert(uuid.uuid4(), "sup-1")

    async def test_list_by_status(self, alerts, started_mo):
        alert = (await alerts.evaluate_alerts(started_mo.id)).raised[0]
        await alerts.resolve_alert(alert.id, "sup-1")

        items, total = await alerts.list_alerts(status=AlertStatus.RESOLVED.value)
        assert total == 1
        assert items[0].id == alert.id


async def test_cleanup_removes_only_closed_alerts(alerts, started_mo):
    evaluation = await alerts.evaluate_alerts(started_mo.id)
    await alerts.resolve_alert(evaluation.raised[0].id, "sup-1")

    assert await alerts.cleanup_resolved_alerts(older_than_days=30) == 0
    assert await alerts.cleanup_resolved_alerts(older_than_days=0) == 1

    remaining, total = await alerts.list_alerts(mo_id=started_mo.id)
    assert total == 1
    assert remaining[0].status == AlertStatus.ACTIVE.value
