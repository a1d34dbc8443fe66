"""
Repositories Layer

Narrow read/write interfaces the scheduler core depends on:
- interfaces.py declares them as typing Protocols over the scheduler data model
- sql.py implements them on a SQLModel Session
The core never sees Session, select() or table models.
"""
