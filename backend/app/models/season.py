from typing import TYPE_CHECKING, List, Optional

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.league_season import LeagueSeason


class Season(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    name: str
    is_current: bool = Field(default=False)

    # Relationships
    league_seasons: List["LeagueSeason"] = Relationship(back_populates="season")
