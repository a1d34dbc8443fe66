from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

# game_status values
GAME_STATUS_SCHEDULED = 0
GAME_STATUS_FINAL = 1
GAME_STATUS_RAINOUT = 2
GAME_STATUS_POSTPONED = 3
GAME_STATUS_FORFEIT = 4


class Game(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    league_season_id: int = Field(foreign_key="leagueseason.id", index=True)
    home_team_season_id: int = Field(foreign_key="teamseason.id")
    visitor_team_season_id: int = Field(foreign_key="teamseason.id")
    game_date: Optional[datetime] = Field(default=None)  # naive UTC
    field_id: Optional[int] = Field(default=None, foreign_key="availablefield.id")
    umpire1: Optional[int] = Field(default=None, foreign_key="umpire.id")
    umpire2: Optional[int] = Field(default=None, foreign_key="umpire.id")
    umpire3: Optional[int] = Field(default=None, foreign_key="umpire.id")
    umpire4: Optional[int] = Field(default=None, foreign_key="umpire.id")
    duration_minutes: Optional[int] = Field(default=None)
    game_status: int = Field(default=GAME_STATUS_SCHEDULED)
    comment: Optional[str] = None

    def umpire_ids(self):
        return [u for u in (self.umpire1, self.umpire2, self.umpire3, self.umpire4) if u is not None]
