from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

# Exclusion windows store naive UTC datetimes; [start_time, end_time)


class SeasonExclusion(SQLModel, table=True):
    __tablename__ = "seasonexclusion"

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    season_id: int = Field(foreign_key="season.id", index=True)
    start_time: datetime
    end_time: datetime
    note: Optional[str] = Field(default=None, max_length=255)
    enabled: bool = Field(default=True)


class TeamExclusion(SQLModel, table=True):
    __tablename__ = "teamexclusion"

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    season_id: int = Field(foreign_key="season.id", index=True)
    team_season_id: int = Field(foreign_key="teamseason.id")
    start_time: datetime
    end_time: datetime
    note: Optional[str] = Field(default=None, max_length=255)
    enabled: bool = Field(default=True)


class UmpireExclusion(SQLModel, table=True):
    __tablename__ = "umpireexclusion"

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    season_id: int = Field(foreign_key="season.id", index=True)
    umpire_id: int = Field(foreign_key="umpire.id")
    start_time: datetime
    end_time: datetime
    note: Optional[str] = Field(default=None, max_length=255)
    enabled: bool = Field(default=True)
