from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from bioenroll.models.user_info import UserInfo


class UserInfoRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_name(self, user_id: int) -> Optional[str]:
        user = await self.db.get(UserInfo, user_id)
        return user.name if user else None
