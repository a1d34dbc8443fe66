from datetime import date, datetime
from typing import Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, SQLModel


class SchedulerSeasonConfig(SQLModel, table=True):
    __tablename__ = "schedulerseasonconfig"
    __table_args__ = (SAUniqueConstraint("season_id", name="uq_scheduler_config_season"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    season_id: int = Field(foreign_key="season.id")
    start_date: date
    end_date: date
    umpires_per_game: Optional[int] = Field(default=None)
    max_games_per_umpire_per_day: Optional[int] = Field(default=None)
    default_game_minutes: Optional[int] = Field(default=None)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})


class SchedulerLeagueSelection(SQLModel, table=True):
    __tablename__ = "schedulerleagueselection"
    __table_args__ = (
        SAUniqueConstraint("season_id", "league_season_id", name="uq_scheduler_league_selection"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    season_id: int = Field(foreign_key="season.id", index=True)
    league_season_id: int = Field(foreign_key="leagueseason.id")
    enabled: bool = Field(default=True)
