from app.models.account import Account
from app.models.available_field import AvailableField
from app.models.exclusions import SeasonExclusion, TeamExclusion, UmpireExclusion
from app.models.field_availability_rule import FieldAvailabilityRule
from app.models.field_exclusion_date import FieldExclusionDate
from app.models.game import Game
from app.models.league_season import LeagueSeason
from app.models.scheduler_apply_run import SchedulerApplyRun
from app.models.scheduler_season_config import SchedulerLeagueSelection, SchedulerSeasonConfig
from app.models.season import Season
from app.models.team_season import TeamSeason
from app.models.umpire import Umpire

__all__ = [
    "Account",
    "Season",
    "LeagueSeason",
    "TeamSeason",
    "AvailableField",
    "Umpire",
    "Game",
    "FieldAvailabilityRule",
    "FieldExclusionDate",
    "SeasonExclusion",
    "TeamExclusion",
    "UmpireExclusion",
    "SchedulerSeasonConfig",
    "SchedulerLeagueSelection",
    "SchedulerApplyRun",
]
