from typing import TYPE_CHECKING, Optional

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.league_season import LeagueSeason


class TeamSeason(SQLModel, table=True):
    __tablename__ = "teamseason"

    id: Optional[int] = Field(default=None, primary_key=True)
    league_season_id: int = Field(foreign_key="leagueseason.id", index=True)
    name: str
    division_season_id: Optional[int] = Field(default=None)

    # Relationships
    league_season: "LeagueSeason" = Relationship(back_populates="teams")
