"""
Manufacturing Order Service.

Business logic for the MO lifecycle:
- Creation (supervisor action, status PENDING)
- Manual status changes (hold / resume / cancel)
- Listing and lookup

COMPLETED is never settable here; only MOClosureService reaches it.
"""
import logging
import uuid
from datetime import date, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from paneltrack.core.exceptions import (
    ErrorDetail,
    NotFoundError,
    SpecificationValidationError,
    StateConflictError,
    raise_for_violations,
)
from paneltrack.core.production_rules import ProductionRules, get_production_rules
from paneltrack.db_types import utc_now
from paneltrack.models.manufacturing_order import ACTIVE_MO_STATUSES, ManufacturingOrder, MOStatus
from paneltrack.schemas.manufacturing_order import ManufacturingOrderCreate

logger = logging.getLogger(__name__)


# Manual transitions; COMPLETED is reached by closure only
ALLOWED_STATUS_TRANSITIONS = {
    MOStatus.PENDING.value: {MOStatus.IN_PROGRESS.value, MOStatus.ON_HOLD.value, MOStatus.CANCELLED.value},
    MOStatus.IN_PROGRESS.value: {MOStatus.ON_HOLD.value, MOStatus.CANCELLED.value},
    MOStatus.ON_HOLD.value: {MOStatus.IN_PROGRESS.value, MOStatus.CANCELLED.value},
    MOStatus.COMPLETED.value: set(),
    MOStatus.CANCELLED.value: set(),
}


def ensure_mo_active(mo: ManufacturingOrder) -> None:
    """Panels can only be registered or inspected under a PENDING/IN_PROGRESS order."""
    if mo.status not in ACTIVE_MO_STATUSES:
        raise StateConflictError(
            f"Manufacturing order {mo.order_number} is {mo.status}",
            "MO_NOT_ACTIVE",
            field="mo_id",
        )


class ManufacturingOrderService:
    """Service for manufacturing order operations."""

    def __init__(self, db: AsyncSession, rules: Optional[ProductionRules] = None):
        self.db = db
        self.rules = rules or get_production_rules()

    # ==================== Validation ====================

    def validate_order(self, data: ManufacturingOrderCreate, today: Optional[date] = None) -> List[ErrorDetail]:
        today = today or date.today()
        violations = []

        if data.panel_type not in self.rules.panel_types:
            violations.append(ErrorDetail(
                field="panel_type",
                code="INVALID_PANEL_TYPE",
                message=f"Panel type must be one of: {', '.join(self.rules.panel_types)}",
            ))
        if not self.rules.mo_quantity_min <= data.quantity <= self.rules.mo_quantity_max:
            violations.append(ErrorDetail(
                field="quantity",
                code="INVALID_QUANTITY",
                message=f"Quantity must be between {self.rules.mo_quantity_min} and {self.rules.mo_quantity_max}",
            ))
        if data.start_date > data.end_date:
            violations.append(ErrorDetail(
                field="end_date",
                code="INVALID_DATE_RANGE",
                message="End date must be on or after start date",
            ))
        earliest = today - timedelta(days=self.rules.mo_start_lookback_days)
        if data.start_date < earliest:
            violations.append(ErrorDetail(
                field="start_date",
                code="START_DATE_OUT_OF_WINDOW",
                message=f"Start date cannot be before {earliest.isoformat()}",
            ))
        latest = today + timedelta(days=self.rules.mo_end_lookahead_days)
        if data.end_date > latest:
            violations.append(ErrorDetail(
                field="end_date",
                code="END_DATE_OUT_OF_WINDOW",
                message=f"End date cannot be after {latest.isoformat()}",
            ))
        return violations

    # ==================== Create / Read ====================

    async def create_manufacturing_order(
        self,
        data: ManufacturingOrderCreate,
        today: Optional[date] = None,
    ) -> ManufacturingOrder:
        """Create an MO in PENDING status."""
        raise_for_violations(
            self.validate_order(data, today),
            SpecificationValidationError,
            "Manufacturing order is invalid",
            "MO_INVALID",
        )

        existing = await self.db.execute(
            select(ManufacturingOrder.id).where(ManufacturingOrder.order_number == data.order_number)
        )
        if existing.scalar_one_or_none() is not None:
            raise StateConflictError(
                f"Manufacturing order {data.order_number} already exists",
                "DUPLICATE_ORDER_NUMBER",
                field="order_number",
            )

        mo = ManufacturingOrder(
            id=uuid.uuid4(),
            order_number=data.order_number,
            panel_type=data.panel_type,
            quantity=data.quantity,
            status=MOStatus.PENDING.value,
            priority=data.priority.value,
            start_date=data.start_date,
            end_date=data.end_date,
            panels_completed=0,
            panels_failed=0,
            notes=data.notes,
            created_by=data.created_by,
        )
        self.db.add(mo)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise StateConflictError(
                f"Manufacturing order {data.order_number} already exists",
                "DUPLICATE_ORDER_NUMBER",
                field="order_number",
            )
        await self.db.refresh(mo)

        logger.info(f"Created MO {mo.order_number}: {mo.quantity} x {mo.panel_type}-cell")
        return mo

    async def get_manufacturing_order(self, mo_id: uuid.UUID, for_update: bool = False) -> ManufacturingOrder:
        stmt = select(ManufacturingOrder).where(ManufacturingOrder.id == mo_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        mo = result.scalar_one_or_none()
        if mo is None:
            raise NotFoundError(f"Manufacturing order {mo_id} not found", "MO_NOT_FOUND", field="mo_id")
        return mo

    async def list_manufacturing_orders(
        self,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[ManufacturingOrder], int]:
        query = select(ManufacturingOrder)
        count_query = select(func.count(ManufacturingOrder.id))
        if status:
            query = query.where(ManufacturingOrder.status == status)
            count_query = count_query.where(ManufacturingOrder.status == status)

        total = (await self.db.execute(count_query)).scalar() or 0
        query = query.order_by(ManufacturingOrder.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    # ==================== Status ====================

    async def change_status(
        self,
        mo_id: uuid.UUID,
        target: MOStatus,
        changed_by: str,
        reason: Optional[str] = None,
    ) -> ManufacturingOrder:
        """Hold, resume or cancel an order."""
        target = MOStatus(target).value
        if target == MOStatus.COMPLETED.value:
            raise StateConflictError(
                "COMPLETED is set automatically when the order quantity is reached",
                "STATUS_NOT_SETTABLE",
                field="status",
            )

        mo = await self.get_manufacturing_order(mo_id, for_update=True)
        previous = mo.status
        if target not in ALLOWED_STATUS_TRANSITIONS[previous]:
            # mo is expired after the rollback
            order_number = mo.order_number
            await self.db.rollback()
            raise StateConflictError(
                f"Cannot change MO {order_number} from {previous} to {target}",
                "INVALID_STATUS_TRANSITION",
                field="status",
            )

        mo.status = target
        mo.status_reason = reason
        mo.updated_by = changed_by
        mo.updated_at = utc_now()
        await self.db.commit()
        await self.db.refresh(mo)

        logger.info(f"MO {mo.order_number}: {previous} -> {target} by {changed_by}")
        return mo
