from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, SQLModel, Text


class SchedulerApplyRun(SQLModel, table=True):
    """Idempotency ledger row: one per account and applied run id / idempotency key."""

    __tablename__ = "schedulerapplyrun"
    __table_args__ = (SAUniqueConstraint("account_id", "idempotency_key", name="uq_scheduler_apply_run_key"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    idempotency_key: str = Field(max_length=128, index=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    season_id: int = Field(foreign_key="season.id", index=True)
    run_id: str = Field(max_length=128)
    mode: str = Field(max_length=32)
    request_fingerprint: str = Field(max_length=64)
    status: str = Field(default="applied", max_length=32)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    result_json: Optional[str] = Field(default=None, sa_column=Column(Text))
