"""
Apply Service - commits a schedule proposal at most once per account and idempotency key.

Steps for apply_proposal():
1. Key = request.idempotency_key or request.run_id; a ledger hit replays the
   stored ApplyResult (same request fingerprint) or raises ConflictError
2. Under the per-season lock, rebuild the ProblemSpec for the scope and
   re-validate every proposed assignment; any violation raises ConflictError
   and nothing is written
3. Write placements and the ledger row in one transaction. The ledger's unique
   key is the check-and-set: a concurrent loser rolls back and replays the
   winner's result

Modes:
- full_replace: game_ids is the scope; scope games without a proposal are cleared
- incremental: only games present in assignments are touched
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from app.config import MAX_UMPIRES_PER_GAME
from app.repositories.interfaces import ApplyUnitOfWork
from app.services.problem_spec_builder import ProblemSpecBuilder, SolveFilters
from app.services.scheduler_engine import canonical_hash
from app.services.scheduler_types import (
    Assignment,
    GamePlacement,
    HardConstraints,
    LedgerEntry,
    id_sort_key,
)
from app.utils.constraints import validate_assignments
from app.utils.errors import ConflictError, DuplicateRunError, ValidationError
from app.utils.season_locks import SeasonLockRegistry, season_locks
from app.utils.time_utils import iso_utc, to_utc

logger = logging.getLogger(__name__)

APPLY_MODE_FULL_REPLACE = "full_replace"
APPLY_MODE_INCREMENTAL = "incremental"
VALID_APPLY_MODES = {APPLY_MODE_FULL_REPLACE, APPLY_MODE_INCREMENTAL}

APPLY_STATUS_APPLIED = "applied"


@dataclass(frozen=True)
class ApplyRequest:
    season_id: str
    run_id: str
    mode: str
    assignments: Tuple[Assignment, ...]
    game_ids: Optional[Tuple[str, ...]] = None
    umpires_per_game: Optional[int] = None
    constraints: Optional[HardConstraints] = None
    idempotency_key: Optional[str] = None

    @property
    def key(self) -> str:
        return self.idempotency_key or self.run_id

    def fingerprint(self) -> str:
        """Stable hash of everything that determines the writes."""
        payload = {
            "season_id": self.season_id,
            "run_id": self.run_id,
            "mode": self.mode,
            "assignments": sorted(
                (a.to_dict() for a in self.assignments), key=lambda a: id_sort_key(a["game_id"])
            ),
            "game_ids": sorted(self.game_ids, key=id_sort_key) if self.game_ids is not None else None,
            "umpires_per_game": self.umpires_per_game,
            "constraints": self.constraints.to_dict() if self.constraints else None,
        }
        return canonical_hash(payload)


@dataclass
class ApplyResult:
    run_id: str
    idempotency_key: str
    mode: str
    status: str
    created_game_ids: List[str] = field(default_factory=list)
    updated_game_ids: List[str] = field(default_factory=list)
    unchanged_game_ids: List[str] = field(default_factory=list)
    cleared_game_ids: List[str] = field(default_factory=list)
    applied_at: Optional[str] = None
    replayed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "idempotency_key": self.idempotency_key,
            "mode": self.mode,
            "status": self.status,
            "created_game_ids": self.created_game_ids,
            "updated_game_ids": self.updated_game_ids,
            "unchanged_game_ids": self.unchanged_game_ids,
            "cleared_game_ids": self.cleared_game_ids,
            "applied_at": self.applied_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], replayed: bool = False) -> "ApplyResult":
        return cls(
            run_id=data["run_id"],
            idempotency_key=data["idempotency_key"],
            mode=data["mode"],
            status=data.get("status", APPLY_STATUS_APPLIED),
            created_game_ids=list(data.get("created_game_ids", [])),
            updated_game_ids=list(data.get("updated_game_ids", [])),
            unchanged_game_ids=list(data.get("unchanged_game_ids", [])),
            cleared_game_ids=list(data.get("cleared_game_ids", [])),
            applied_at=data.get("applied_at"),
            replayed=replayed,
        )


def _same_placement(current: GamePlacement, proposed: Assignment) -> bool:
    return (
        current.field_id == proposed.field_id
        and current.start_time is not None
        and to_utc(current.start_time) == to_utc(proposed.start_time)
        and tuple(current.umpire_ids) == tuple(proposed.umpire_ids)
    )


class ApplyService:
    def __init__(
        self,
        builder: ProblemSpecBuilder,
        unit_of_work: ApplyUnitOfWork,
        locks: Optional[SeasonLockRegistry] = None,
    ):
        self.builder = builder
        self.uow = unit_of_work
        self.locks = locks or season_locks

    def apply_proposal(self, account_id: str, request: ApplyRequest) -> ApplyResult:
        """
        Apply a proposal.

        Raises:
            ValidationError: malformed request
            NotFoundError: account/season outside scope
            ConflictError: proposal violates hard constraints against current
                state, or the key was used for a different request
        """
        account_id = str(account_id)
        self._validate_request(request)
        fingerprint = request.fingerprint()

        existing = self.uow.ledger.get(account_id, request.key)
        if existing is not None:
            return self._replay(existing, account_id, request, fingerprint)

        with self.locks.hold(account_id, request.season_id):
            existing = self.uow.ledger.get(account_id, request.key)
            if existing is not None:
                return self._replay(existing, account_id, request, fingerprint)

            try:
                result = self._apply_locked(account_id, request, fingerprint)
                self.uow.commit()
            except DuplicateRunError:
                self.uow.rollback()
                logger.info("APPLY_DUPLICATE: key=%s lost the race, replaying winner", request.key)
                winner = self.uow.ledger.get(account_id, request.key)
                if winner is None:
                    raise
                return self._replay(winner, account_id, request, fingerprint)
            except Exception:
                self.uow.rollback()
                raise

        logger.info(
            "APPLY_COMMITTED: account_id=%s season_id=%s run_id=%s mode=%s created=%s updated=%s "
            "unchanged=%s cleared=%s",
            account_id,
            request.season_id,
            request.run_id,
            request.mode,
            len(result.created_game_ids),
            len(result.updated_game_ids),
            len(result.unchanged_game_ids),
            len(result.cleared_game_ids),
        )
        return result

    def _validate_request(self, request: ApplyRequest) -> None:
        if request.mode not in VALID_APPLY_MODES:
            raise ValidationError(f"Unknown apply mode: {request.mode}")
        if not request.run_id:
            raise ValidationError("run_id is required")

        ids = [a.game_id for a in request.assignments]
        duplicates = sorted({gid for gid in ids if ids.count(gid) > 1}, key=id_sort_key)
        if duplicates:
            raise ValidationError(f"Duplicate assignments for games: {', '.join(duplicates)}")

        for assignment in request.assignments:
            if assignment.end_time <= assignment.start_time:
                raise ValidationError(f"Assignment for game {assignment.game_id} must end after it starts")
            if len(assignment.umpire_ids) > MAX_UMPIRES_PER_GAME:
                raise ValidationError(
                    f"Assignment for game {assignment.game_id} lists more than {MAX_UMPIRES_PER_GAME} umpires"
                )

        if request.mode == APPLY_MODE_FULL_REPLACE:
            if not request.game_ids:
                raise ValidationError("game_ids is required for full_replace")
            outside = [gid for gid in ids if gid not in set(request.game_ids)]
            if outside:
                raise ValidationError(f"Assignments outside game_ids scope: {', '.join(outside)}")
        elif not request.assignments:
            raise ValidationError("incremental apply requires at least one assignment")

    def _replay(
        self, entry: LedgerEntry, account_id: str, request: ApplyRequest, fingerprint: str
    ) -> ApplyResult:
        if (
            entry.account_id != account_id
            or entry.season_id != str(request.season_id)
            or entry.request_fingerprint != fingerprint
        ):
            raise ConflictError(
                f"Idempotency key {entry.idempotency_key} was already applied to a different request"
            )
        logger.info("APPLY_REPLAYED: key=%s run_id=%s", entry.idempotency_key, entry.run_id)
        return ApplyResult.from_dict(entry.result, replayed=True)

    def _apply_locked(self, account_id: str, request: ApplyRequest, fingerprint: str) -> ApplyResult:
        if request.mode == APPLY_MODE_FULL_REPLACE:
            scope = list(dict.fromkeys(request.game_ids))
        else:
            scope = [a.game_id for a in request.assignments]

        spec = self.builder.build(
            account_id,
            request.season_id,
            SolveFilters(
                game_ids=tuple(scope),
                umpires_per_game=request.umpires_per_game,
                constraints=request.constraints,
                run_id=request.run_id,
            ),
        )

        violations = validate_assignments(request.assignments, spec)
        if violations:
            logger.warning(
                "APPLY_CONFLICT: run_id=%s violations=%s codes=%s",
                request.run_id,
                len(violations),
                sorted({v.code for v in violations}),
            )
            raise ConflictError(
                f"Proposal no longer satisfies hard constraints ({len(violations)} violation(s))",
                violations=[v.to_dict() for v in violations],
            )

        current = self.uow.writer.get_placements(scope)
        proposed = {a.game_id: a for a in request.assignments}
        result = ApplyResult(
            run_id=request.run_id,
            idempotency_key=request.key,
            mode=request.mode,
            status=APPLY_STATUS_APPLIED,
            applied_at=iso_utc(datetime.now(timezone.utc)),
        )

        for game_id in sorted(scope, key=id_sort_key):
            placement = current.get(game_id)
            assignment = proposed.get(game_id)
            if assignment is None:
                if placement is not None and placement.is_assigned:
                    self.uow.writer.clear_placement(game_id)
                    result.cleared_game_ids.append(game_id)
                continue

            if placement is None or not placement.is_assigned:
                result.created_game_ids.append(game_id)
            elif _same_placement(placement, assignment):
                result.unchanged_game_ids.append(game_id)
                continue
            else:
                result.updated_game_ids.append(game_id)
            self.uow.writer.write_placement(game_id, assignment.field_id, assignment.start_time, assignment.umpire_ids)

        self.uow.ledger.record(
            LedgerEntry(
                idempotency_key=request.key,
                account_id=account_id,
                season_id=str(request.season_id),
                run_id=request.run_id,
                mode=request.mode,
                request_fingerprint=fingerprint,
                status=APPLY_STATUS_APPLIED,
                result=result.to_dict(),
            )
        )
        return result
