import pytest
from sqlalchemy import update

from paneltrack.core.exceptions import AggregationError
from paneltrack.jobs import mo_jobs
from paneltrack.jobs.scheduler import get_job_status
from paneltrack.models.alert import AlertType
from paneltrack.models.manufacturing_order import ManufacturingOrder, MOStatus
from paneltrack.models.mo_closure_audit import ClosureTrigger
from paneltrack.schemas.panel import PanelRegister
from paneltrack.services.manufacturing_order_service import ManufacturingOrderService
from paneltrack.services.mo_alert_service import MOAlertService
from paneltrack.services.mo_closure_service import MOClosureService
from paneltrack.services.panel_service import PanelService


@pytest.fixture(autouse=True)
def job_sessions(monkeypatch, session_factory):
    """
    Point the jobs at the test database.

    The in-memory engine has a single shared connection, so tests commit
    db_session before running a job to hand that connection over.
    """
    monkeypatch.setattr(mo_jobs, "get_db_session", lambda: session_factory())


@pytest.fixture
def start_order(db_session, rules, mo_factory, barcode_for):
    async def _start(quantity=5, sequence=1):
        mo = await mo_factory(quantity=quantity)
        await PanelService(db_session, rules).register_panel(
            PanelRegister(mo_id=mo.id, registered_by="op-1", barcode=barcode_for(sequence))
        )
        return mo

    return _start


async def test_monitor_sweeps_in_progress_orders(db_session, start_order, mo_factory):
    mo = await start_order()
    await mo_factory()  # still PENDING, not swept
    await db_session.commit()

    summary = await mo_jobs.monitor_active_orders()

    assert summary["order_count"] == 1
    assert summary["successful"] == 1
    assert summary["failed"] == 0
    result = summary["results"][0]
    assert result["mo_id"] == str(mo.id)
    assert result["percent_complete"] == 0.0
    assert result["alerts_raised"] == 2
    assert result["closed"] is False


async def test_monitor_closes_order_at_quantity(db_session, rules, start_order):
    mo = await start_order(quantity=1)
    await db_session.execute(
        update(ManufacturingOrder).where(ManufacturingOrder.id == mo.id).values(panels_completed=1)
    )
    await db_session.commit()

    summary = await mo_jobs.monitor_active_orders()

    assert summary["closed"] == 1
    mo = await ManufacturingOrderService(db_session, rules).get_manufacturing_order(mo.id)
    assert mo.status == MOStatus.COMPLETED.value
    items, _ = await MOAlertService(db_session, rules=rules).list_alerts(mo_id=mo.id)
    assert AlertType.MO_COMPLETED.value in {a.alert_type for a in items}
    audits, _ = await MOClosureService(db_session, rules).get_closure_history(mo.id)
    assert [a.trigger for a in audits] == [ClosureTrigger.MONITOR.value]


async def test_one_failing_order_does_not_stop_the_sweep(db_session, monkeypatch, start_order):
    broken = await start_order(sequence=1)
    healthy = await start_order(sequence=2)
    broken_id, healthy_id = broken.id, healthy.id
    await db_session.commit()
    original = mo_jobs.monitor_order

    async def flaky_monitor(mo_id):
        if mo_id == broken_id:
            raise AggregationError("boom", "PROGRESS_COMPUTATION_FAILED")
        return await original(mo_id)

    monkeypatch.setattr(mo_jobs, "monitor_order", flaky_monitor)
    summary = await mo_jobs.monitor_active_orders()

    assert summary["order_count"] == 2
    assert summary["failed"] == 1
    assert [r["mo_id"] for r in summary["results"]] == [str(healthy_id)]


async def test_cleanup_job(db_session, rules, start_order):
    mo = await start_order()
    alerts = MOAlertService(db_session, rules=rules)
    evaluation = await alerts.evaluate_alerts(mo.id)
    await alerts.resolve_alert(evaluation.raised[0].id, "sup-1")
    await db_session.commit()

    # Retention is counted in days, so a fresh resolution survives
    assert await mo_jobs.cleanup_resolved_alerts() == 0


def test_no_jobs_registered_until_scheduler_starts():
    assert get_job_status() == []
