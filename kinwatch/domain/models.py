from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class StoreNode(Base):
    __tablename__ = "store_nodes"

    # One row per leaf; the slash-joined path is the key ("account/u1/profile/email").
    path: Mapped[str] = mapped_column(String, primary_key=True)
    # Leaf payload: scalar or list; mappings are always flattened into child rows.
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
