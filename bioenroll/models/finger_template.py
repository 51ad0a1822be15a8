from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class FingerTemplate(SQLModel, table=True):
    __tablename__ = "finger_templates"

    fuid: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: int = Field(index=True)
    finger_id: int = Field(index=True)
    name: Optional[str] = Field(default=None, max_length=50)
    finger_template: Optional[bytes] = None
    finger_image: Optional[bytes] = None
    created_date: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_type=DateTime(timezone=True),
    )

    @property
    def template_size(self) -> int:
        return len(self.finger_template or b"")

    @property
    def image_size(self) -> Optional[int]:
        return len(self.finger_image) if self.finger_image is not None else None

    @property
    def has_valid_template(self) -> bool:
        return self.template_size > 0
