# vote_ledger.py — Vote quota enforcement and live vote aggregation
# Counts always come from the vote rows themselves; there is no
# denormalised counter to drift under concurrent add/remove.
import logging
from typing import Dict, Set

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from models import Card, Retrospective, Vote, VoteType
from phase_machine import VOTE_PHASES, require_phase
from retro_errors import AlreadyVoted, NotVoted, QuotaExceeded

logger = logging.getLogger("retroboard.votes")


def vote_quota(retro: Retrospective) -> int:
    if VoteType(retro.vote_type) == VoteType.SINGLE:
        return 1
    return retro.max_votes_per_user


async def user_vote_count(db: AsyncSession, retro_id: str, user_id: str) -> int:
    stmt = (
        select(func.count(Vote.id))
        .join(Card, Card.id == Vote.card_id)
        .where(Card.retro_id == retro_id, Vote.user_id == user_id)
    )
    result = await db.execute(stmt)
    return result.scalar() or 0


async def card_vote_count(db: AsyncSession, card_id: str) -> int:
    result = await db.execute(select(func.count(Vote.id)).where(Vote.card_id == card_id))
    return result.scalar() or 0


async def card_vote_counts(db: AsyncSession, retro_id: str) -> Dict[str, int]:
    stmt = (
        select(Vote.card_id, func.count(Vote.id))
        .join(Card, Card.id == Vote.card_id)
        .where(Card.retro_id == retro_id)
        .group_by(Vote.card_id)
    )
    result = await db.execute(stmt)
    return {card_id: count for card_id, count in result.all()}


async def voted_card_ids(db: AsyncSession, retro_id: str, user_id: str) -> Set[str]:
    stmt = (
        select(Vote.card_id)
        .join(Card, Card.id == Vote.card_id)
        .where(Card.retro_id == retro_id, Vote.user_id == user_id)
    )
    result = await db.execute(stmt)
    return set(result.scalars().all())


async def _find_vote(db: AsyncSession, card_id: str, user_id: str):
    result = await db.execute(select(Vote).where(Vote.card_id == card_id, Vote.user_id == user_id))
    return result.scalar_one_or_none()


async def vote_for_card(db: AsyncSession, retro: Retrospective, card: Card, user_id: str) -> int:
    """Cast `user_id`'s vote on `card` and return the card's new vote count.

    Must run inside the retro's unit of work so the quota check and the
    insert are atomic for this (retro, user).
    """
    require_phase(retro, VOTE_PHASES, action="Voting")

    if await _find_vote(db, card.id, user_id):
        raise AlreadyVoted("You already voted for this card")

    quota = vote_quota(retro)
    used = await user_vote_count(db, retro.id, user_id)
    if used >= quota:
        raise QuotaExceeded(quota)

    db.add(Vote(card_id=card.id, user_id=user_id))
    await db.flush()
    count = await card_vote_count(db, card.id)
    logger.debug("Vote %s → card %s (%d/%d used)", user_id, card.id, used + 1, quota)
    return count


async def remove_vote(db: AsyncSession, retro: Retrospective, card: Card, user_id: str) -> int:
    """Withdraw `user_id`'s vote on `card` and return the card's new vote count"""
    require_phase(retro, VOTE_PHASES, action="Removing a vote")

    vote = await _find_vote(db, card.id, user_id)
    if not vote:
        raise NotVoted("You have not voted for this card")

    await db.delete(vote)
    await db.flush()
    logger.debug("Vote withdrawn by %s from card %s", user_id, card.id)
    return await card_vote_count(db, card.id)
