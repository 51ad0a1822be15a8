from typing import Optional

from sqlmodel import Field, SQLModel


class UserInfo(SQLModel, table=True):
    __tablename__ = "user_info"

    user_id: int = Field(primary_key=True)
    name: Optional[str] = None
