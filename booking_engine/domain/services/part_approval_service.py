"""
Part Approval Service - catalog review workflow gating which parts may ship
"""
from decimal import Decimal
from typing import Mapping

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.exceptions import (
    InvalidRequestError,
    InvalidStateTransitionError,
    PartApprovalNotFoundError,
)
from booking_engine.core.logging import get_logger
from booking_engine.db.compat import utcnow
from booking_engine.db.models.part_approval import PartApproval, PartApprovalStatus

logger = get_logger(__name__)


PART_APPROVAL_TRANSITIONS = {
    # Approve/reject straight from PENDING implies the review step
    PartApprovalStatus.PENDING: [
        PartApprovalStatus.UNDER_REVIEW,
        PartApprovalStatus.APPROVED,
        PartApprovalStatus.REJECTED,
    ],
    PartApprovalStatus.UNDER_REVIEW: [PartApprovalStatus.APPROVED, PartApprovalStatus.REJECTED],
    PartApprovalStatus.APPROVED: [],
    PartApprovalStatus.REJECTED: [],
}

_OPEN_OR_APPROVED = (
    PartApprovalStatus.PENDING,
    PartApprovalStatus.UNDER_REVIEW,
    PartApprovalStatus.APPROVED,
)


class PartApprovalService:
    """PENDING -> UNDER_REVIEW -> APPROVED | REJECTED"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_approval(self, approval_id: int, for_update: bool = False) -> PartApproval:
        query = select(PartApproval).where(PartApproval.id == approval_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        approval = result.scalar_one_or_none()
        if not approval:
            raise PartApprovalNotFoundError(approval_id)
        return approval

    async def submit_part(
        self,
        brand_id: int,
        part_id: str,
        part_name: str,
        category: str | None = None,
        submitted_price: Decimal | None = None,
    ) -> PartApproval:
        """
        Open a new review round for a part.

        A rejected part may be resubmitted (it gets a fresh row); a part with
        a pending, in-review or approved record may not.
        """
        part_id = (part_id or "").strip()
        if not part_id:
            raise InvalidRequestError("part_id is required", field="part_id")
        if not part_name or not part_name.strip():
            raise InvalidRequestError("part_name is required", field="part_name")

        result = await self.db.execute(
            select(PartApproval)
            .where(
                PartApproval.brand_id == brand_id,
                PartApproval.part_id == part_id,
                PartApproval.status.in_(_OPEN_OR_APPROVED),
            )
            .limit(1)
        )
        existing = result.scalar_one_or_none()
        if existing:
            raise InvalidRequestError(
                f"Part '{part_id}' already has a {existing.status.value} approval record",
                field="part_id",
                details={"approval_id": existing.id, "status": existing.status.value},
            )

        approval = PartApproval(
            brand_id=brand_id,
            part_id=part_id,
            part_name=part_name.strip(),
            category=category,
            submitted_price=submitted_price,
            status=PartApprovalStatus.PENDING,
        )
        self.db.add(approval)
        await self.db.commit()
        await self.db.refresh(approval)

        logger.info(
            "Part submitted for approval",
            extra_data={"approval_id": approval.id, "brand_id": brand_id, "part_id": part_id}
        )
        return approval

    async def _transition(
        self,
        approval_id: int,
        target: PartApprovalStatus,
        rejection_reason: str | None = None,
    ) -> PartApproval:
        approval = await self.get_approval(approval_id, for_update=True)
        if target not in PART_APPROVAL_TRANSITIONS[approval.status]:
            raise InvalidStateTransitionError(
                approval.status.value, target.value, entity="part_approval", entity_id=approval_id
            )

        previous = approval.status
        approval.status = target
        if target in (PartApprovalStatus.APPROVED, PartApprovalStatus.REJECTED):
            approval.reviewed_at = utcnow()
        approval.rejection_reason = rejection_reason if target == PartApprovalStatus.REJECTED else None
        await self.db.commit()

        logger.info(
            f"Part approval {target.value}",
            extra_data={
                "approval_id": approval_id,
                "brand_id": approval.brand_id,
                "part_id": approval.part_id,
                "from_status": previous.value,
            }
        )
        return approval

    async def start_review(self, approval_id: int) -> PartApproval:
        return await self._transition(approval_id, PartApprovalStatus.UNDER_REVIEW)

    async def approve_part(self, approval_id: int) -> PartApproval:
        return await self._transition(approval_id, PartApprovalStatus.APPROVED)

    async def reject_part(self, approval_id: int, reason: str) -> PartApproval:
        if not reason or not reason.strip():
            raise InvalidRequestError("A rejection reason is required", field="reason")
        return await self._transition(approval_id, PartApprovalStatus.REJECTED, reason.strip())

    async def list_approvals(
        self,
        brand_id: int,
        status: PartApprovalStatus | None = None,
    ) -> list[PartApproval]:
        query = select(PartApproval).where(PartApproval.brand_id == brand_id)
        if status is not None:
            query = query.where(PartApproval.status == status)
        # record_usage bumps counters with bulk UPDATEs, reload what is already in the session
        result = await self.db.execute(
            query.order_by(PartApproval.id.desc()).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def record_usage(self, brand_id: int, units_by_part: Mapping[str, int]) -> None:
        """Bump shipped counters on the approved records. Does not commit."""
        for part_id, units in units_by_part.items():
            await self.db.execute(
                update(PartApproval)
                .where(
                    PartApproval.brand_id == brand_id,
                    PartApproval.part_id == part_id,
                    PartApproval.status == PartApprovalStatus.APPROVED,
                )
                .values(
                    times_shipped=PartApproval.times_shipped + 1,
                    units_shipped=PartApproval.units_shipped + units,
                )
                .execution_options(synchronize_session=False)
            )
