from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.season import Season
    from app.models.team_season import TeamSeason


class LeagueSeason(SQLModel, table=True):
    __tablename__ = "leagueseason"
    __table_args__ = (SAUniqueConstraint("season_id", "name", name="uq_leagueseason_season_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    season_id: int = Field(foreign_key="season.id", index=True)
    name: str

    # Relationships
    season: "Season" = Relationship(back_populates="league_seasons")
    teams: List["TeamSeason"] = Relationship(back_populates="league_season")
