import uuid

from sqlalchemy import Boolean, ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from dailybrief.models.base import Base, TimestampMixin


class ContextSnippet(Base, TimestampMixin):
    """Free-text note the user wants included in their briefings."""

    __tablename__ = "user_context_snippets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("user_settings.user_id", ondelete="CASCADE"), index=True
    )
    content: Mapped[str] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<ContextSnippet {self.id}>"
