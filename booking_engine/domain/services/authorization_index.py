"""
Authorization Index - brand distribution network and approved parts

Read-only, pass-through to the latest committed state. There is no cache, so
a revocation takes effect for the very next booking.
"""
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.db.models.authorized_recipient import AuthorizedRecipient
from booking_engine.db.models.part_approval import PartApproval, PartApprovalStatus


class AuthorizationIndex:
    """Answers the booking gate's two questions"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_recipient(self, brand_id: int, recipient_id: int) -> AuthorizedRecipient | None:
        """Active recipient row (its address is what the carrier ships to)"""
        result = await self.db.execute(
            select(AuthorizedRecipient).where(
                AuthorizedRecipient.brand_id == brand_id,
                AuthorizedRecipient.recipient_id == recipient_id,
                AuthorizedRecipient.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def is_recipient_authorized(self, brand_id: int, recipient_id: int) -> bool:
        return await self.get_recipient(brand_id, recipient_id) is not None

    async def latest_approval(self, brand_id: int, part_id: str) -> PartApproval | None:
        result = await self.db.execute(
            select(PartApproval)
            .where(PartApproval.brand_id == brand_id, PartApproval.part_id == part_id)
            .order_by(PartApproval.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def is_part_approved(self, brand_id: int, part_id: str) -> bool:
        """True only when the newest approval record for the part is APPROVED"""
        approval = await self.latest_approval(brand_id, part_id)
        return approval is not None and approval.status == PartApprovalStatus.APPROVED

    async def authorized_recipients(self, brand_id: int) -> list[AuthorizedRecipient]:
        result = await self.db.execute(
            select(AuthorizedRecipient)
            .where(
                AuthorizedRecipient.brand_id == brand_id,
                AuthorizedRecipient.is_active.is_(True),
            )
            .order_by(AuthorizedRecipient.recipient_name)
        )
        return list(result.scalars().all())

    async def approved_parts(self, brand_id: int) -> list[PartApproval]:
        """Parts whose latest approval record is APPROVED"""
        latest = (
            select(func.max(PartApproval.id))
            .where(PartApproval.brand_id == brand_id)
            .group_by(PartApproval.part_id)
        )
        result = await self.db.execute(
            select(PartApproval)
            .where(
                PartApproval.id.in_(latest),
                PartApproval.status == PartApprovalStatus.APPROVED,
            )
            .order_by(PartApproval.part_id)
        )
        return list(result.scalars().all())
