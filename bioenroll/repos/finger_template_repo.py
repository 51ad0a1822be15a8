from typing import List, Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import delete, func
from sqlmodel import select

from bioenroll.models.finger_template import FingerTemplate
from bioenroll.schemas.enrollment import FingerTemplateCreate


class FingerTemplateRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_for_finger(self, user_id: int, finger_id: int) -> Optional[FingerTemplate]:
        """Return the row for a finger slot, preferring one with template data."""
        statement = (
            select(FingerTemplate)
            .where(FingerTemplate.user_id == user_id, FingerTemplate.finger_id == finger_id)
            .order_by(func.coalesce(func.length(FingerTemplate.finger_template), 0).desc())
        )
        result = await self.db.execute(statement)
        return result.scalars().first()

    async def create(self, data: FingerTemplateCreate) -> FingerTemplate:
        # always a fresh fuid; rows are never updated in place
        template = FingerTemplate(fuid=uuid4(), **data.model_dump())
        self.db.add(template)
        await self.db.commit()
        await self.db.refresh(template)
        return template

    async def list_valid_for_user(self, user_id: int) -> List[FingerTemplate]:
        statement = (
            select(FingerTemplate)
            .where(
                FingerTemplate.user_id == user_id,
                FingerTemplate.finger_template.is_not(None),
                func.length(FingerTemplate.finger_template) > 0,
            )
            .order_by(FingerTemplate.finger_id)
        )
        result = await self.db.execute(statement)
        return list(result.scalars().all())

    async def delete_for_finger(self, user_id: int, finger_id: int) -> int:
        """Delete every row for a finger slot and return the count"""
        statement = delete(FingerTemplate).where(
            FingerTemplate.user_id == user_id,
            FingerTemplate.finger_id == finger_id,
        )
        result = await self.db.execute(statement)
        await self.db.commit()
        return result.rowcount or 0
