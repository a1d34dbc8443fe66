from typing import Optional

from sqlmodel import Field, SQLModel


class Umpire(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    name: str
    email: Optional[str] = None
    max_games_per_day: Optional[int] = Field(default=None)
