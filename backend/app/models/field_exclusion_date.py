from datetime import date
from typing import Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, SQLModel


class FieldExclusionDate(SQLModel, table=True):
    __tablename__ = "fieldexclusiondate"
    __table_args__ = (
        SAUniqueConstraint("season_id", "field_id", "exclusion_date", name="uq_field_exclusion_date"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    season_id: int = Field(foreign_key="season.id", index=True)
    field_id: int = Field(foreign_key="availablefield.id")
    exclusion_date: date
    note: Optional[str] = Field(default=None, max_length=255)
    enabled: bool = Field(default=True)
