from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.portal.models import Account, Base


class IssueStatus(str, enum.Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class Priority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Category(str, enum.Enum):
    INFRASTRUCTURE = "INFRASTRUCTURE"
    SANITATION = "SANITATION"
    SAFETY = "SAFETY"
    ENVIRONMENT = "ENVIRONMENT"
    OTHER = "OTHER"


class Issue(Base):
    __tablename__ = "issues"
    __table_args__ = (
        Index("idx_issues_status", "status"),
        Index("idx_issues_priority", "priority"),
        Index("idx_issues_category", "category"),
        Index("idx_issues_reporter_id", "reporter_id"),
        Index("idx_issues_assignee_id", "assignee_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    location: Mapped[str] = mapped_column(String(500), nullable=False)
    category: Mapped[Category] = mapped_column(Enum(Category, native_enum=False, length=32), nullable=False)
    priority: Mapped[Priority] = mapped_column(
        Enum(Priority, native_enum=False, length=16), nullable=False, default=Priority.MEDIUM
    )
    status: Mapped[IssueStatus] = mapped_column(
        Enum(IssueStatus, native_enum=False, length=16), nullable=False, default=IssueStatus.OPEN
    )

    # reporter never changes after creation
    reporter_id: Mapped[int] = mapped_column(ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False)
    assignee_id: Mapped[int | None] = mapped_column(ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # Optimistic concurrency: a stale UPDATE raises StaleDataError on flush.
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    reporter: Mapped[Account] = relationship(foreign_keys=[reporter_id], lazy="selectin")
    assignee: Mapped[Account | None] = relationship(foreign_keys=[assignee_id], lazy="selectin")

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_closed(self) -> bool:
        return self.status == IssueStatus.CLOSED

    def is_reported_by(self, account_id: int | None) -> bool:
        return account_id is not None and self.reporter_id == account_id

    def is_assigned_to(self, account_id: int | None) -> bool:
        return account_id is not None and self.assignee_id == account_id

    def __repr__(self) -> str:
        return f"<Issue id={self.id} status={self.status} deleted={self.is_deleted}>"
