from datetime import date
from typing import Optional

from sqlmodel import Field, SQLModel


class AvailableField(SQLModel, table=True):
    __tablename__ = "availablefield"

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    name: str
    has_lights: bool = Field(default=False)
    max_parallel_games: int = Field(default=1)
    start_increment_minutes: Optional[int] = Field(default=None)  # None = scheduler default
    usable_from: Optional[date] = Field(default=None)
    usable_until: Optional[date] = Field(default=None)
