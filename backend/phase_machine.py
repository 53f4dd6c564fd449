# phase_machine.py — Retrospective phase state machine
#
#   draft → active → voting → discussing → completed
#
# Phases only move one step forward. Transitions are applied with a
# conditional UPDATE on the expected source phase so two racing callers
# cannot both advance the same retro.
import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional, Union

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from membership import MembershipOracle
from models import Retrospective, RetroStatus, utcnow
from retro_errors import Forbidden, InvalidPhase, InvalidTransition

logger = logging.getLogger("retroboard.phases")

PHASE_ORDER = [
    RetroStatus.DRAFT,
    RetroStatus.ACTIVE,
    RetroStatus.VOTING,
    RetroStatus.DISCUSSING,
    RetroStatus.COMPLETED,
]

# Which phase each mutation is legal in
CARD_PHASES = (RetroStatus.ACTIVE,)
VOTE_PHASES = (RetroStatus.VOTING,)
COMMENT_PHASES = (RetroStatus.DISCUSSING,)
ACTION_ITEM_PHASES = (RetroStatus.DISCUSSING, RetroStatus.COMPLETED)
COMMENT_VISIBLE_PHASES = (RetroStatus.DISCUSSING, RetroStatus.COMPLETED)


def phase_index(status: Union[RetroStatus, str]) -> int:
    return PHASE_ORDER.index(RetroStatus(status))


def next_phase(status: Union[RetroStatus, str]) -> Optional[RetroStatus]:
    idx = phase_index(status)
    if idx + 1 < len(PHASE_ORDER):
        return PHASE_ORDER[idx + 1]
    return None


def require_phase(retro: Retrospective, phases: Iterable[RetroStatus], action: str = "This action") -> None:
    phases = tuple(phases)
    if RetroStatus(retro.status) not in phases:
        raise InvalidPhase(phases, current=retro.status, action=action)


async def can_control(oracle: MembershipOracle, retro: Retrospective, user_id: str) -> bool:
    """Creator or team lead may drive the retro through its phases"""
    if retro.created_by_id == user_id:
        return True
    return await oracle.is_team_lead(retro.team_id, user_id)


def _transition_values(retro: Retrospective, target: RetroStatus, now: datetime) -> dict:
    values = {"status": target, "updated_at": now}
    if target == RetroStatus.ACTIVE:
        if retro.timer_duration:
            values["timer_started_at"] = now
            values["timer_ends_at"] = now + timedelta(seconds=retro.timer_duration)
    elif RetroStatus(retro.status) == RetroStatus.ACTIVE:
        # voting has no countdown
        values["timer_started_at"] = None
        values["timer_ends_at"] = None
    if target == RetroStatus.COMPLETED:
        values["completed_at"] = now
    return values


async def advance_phase(
    db: AsyncSession,
    oracle: MembershipOracle,
    retro: Retrospective,
    caller_id: str,
    target: RetroStatus,
    now: Optional[datetime] = None,
) -> Retrospective:
    """Move `retro` to `target`, which must be the single next phase.

    Does not commit; callers run this inside a store unit of work.
    """
    if not await can_control(oracle, retro, caller_id):
        raise Forbidden("Only the retro creator or a team lead can change the phase")

    current = RetroStatus(retro.status)
    target = RetroStatus(target)
    if next_phase(current) != target:
        raise InvalidTransition(current, target)

    now = now or utcnow()
    values = _transition_values(retro, target, now)
    result = await db.execute(
        update(Retrospective)
        .where(Retrospective.id == retro.id, Retrospective.status == current)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidTransition(current, target)

    for key, value in values.items():
        set_committed_value(retro, key, value)
    logger.info("Retro %s moved %s → %s by %s", retro.id, current.value, target.value, caller_id)
    return retro
