from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class Account(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    timezone_id: Optional[str] = Field(default=None)  # IANA name, e.g. "America/Chicago"
    created_at: datetime = Field(default_factory=datetime.utcnow)
