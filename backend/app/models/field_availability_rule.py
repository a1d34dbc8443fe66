from datetime import date
from typing import Optional

from sqlmodel import Field, SQLModel


class FieldAvailabilityRule(SQLModel, table=True):
    __tablename__ = "fieldavailabilityrule"

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    season_id: int = Field(foreign_key="season.id", index=True)
    field_id: int = Field(foreign_key="availablefield.id")
    start_date: Optional[date] = Field(default=None)  # None = season start
    end_date: Optional[date] = Field(default=None)  # None = season end
    days_of_week_mask: int  # bit 0 = Monday ... bit 6 = Sunday
    start_time_local: str  # "HH:MM"
    end_time_local: str  # "HH:MM"
    enabled: bool = Field(default=True)
