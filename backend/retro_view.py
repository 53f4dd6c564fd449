# retro_view.py — Read model for a single retrospective
#
# Assembles everything a polling client renders: metadata and countdown,
# participants, template columns with their ranked cards, per-card vote
# state, comments once discussion has started, action items, and the
# caller's remaining vote budget. Pure read: no locks, no writes, no caching.
import math
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from membership import MembershipOracle
from models import (
    ActionItem, ActionItemStatus, Card, CardComment, Retrospective, RetroParticipant,
    RetroStatus, Template, TemplateColumn, VoteType, as_utc, utcnow,
)
from phase_machine import COMMENT_VISIBLE_PHASES, can_control, next_phase
from visibility import AuthorOut, project_author
from vote_ledger import card_vote_counts, vote_quota, voted_card_ids


# ============================================================
# SCHEMAS
# ============================================================

class ParticipantOut(BaseModel):
    user_id: str
    name: str
    avatar_url: Optional[str] = None
    joined_at: Optional[str] = None


class CommentOut(BaseModel):
    id: str
    card_id: str
    content: str
    author: AuthorOut
    is_own: bool
    created_at: Optional[str] = None


class CardOut(BaseModel):
    id: str
    column_id: str
    content: str
    author: AuthorOut
    vote_count: int = 0
    has_voted: bool = False
    is_own: bool = False
    created_at: Optional[str] = None
    # None until the retro reaches discussion
    comments: Optional[List[CommentOut]] = None


class ColumnView(BaseModel):
    id: str
    name: str
    emoji: Optional[str] = None
    prompt: Optional[str] = None
    order: int
    cards: List[CardOut] = []


class ActionItemOut(BaseModel):
    id: str
    retro_id: str
    card_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    assignee_id: Optional[str] = None
    assignee_name: Optional[str] = None
    status: str
    due_date: Optional[str] = None
    created_by_id: str
    created_at: Optional[str] = None


class RetroSummary(BaseModel):
    id: str
    name: str
    team_id: str
    template_id: str
    template_name: Optional[str] = None
    status: str
    is_anonymous: bool
    vote_type: str
    max_votes_per_user: int
    timer_duration: Optional[int] = None
    timer_ends_at: Optional[str] = None
    created_by_id: str
    created_at: Optional[str] = None
    completed_at: Optional[str] = None
    card_count: int = 0


class RetroView(RetroSummary):
    next_status: Optional[str] = None
    time_remaining: Optional[int] = None
    can_control: bool = False
    has_joined: bool = False
    participants: List[ParticipantOut] = []
    columns: List[ColumnView] = []
    action_items: List[ActionItemOut] = []
    my_vote_count: int = 0
    vote_quota: int = 0
    remaining_votes: int = 0


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return as_utc(dt).isoformat() if isinstance(dt, datetime) else str(dt)


def _value(enum_or_str) -> str:
    return getattr(enum_or_str, "value", enum_or_str)


def time_remaining(retro: Retrospective, now: Optional[datetime] = None) -> Optional[int]:
    """Whole seconds left on the card-writing timer, floored at zero"""
    if RetroStatus(retro.status) != RetroStatus.ACTIVE or retro.timer_ends_at is None:
        return None
    now = now or utcnow()
    seconds = (as_utc(retro.timer_ends_at) - as_utc(now)).total_seconds()
    return max(0, math.floor(seconds))


def rank_cards(cards: List[Card], counts: Dict[str, int]) -> List[Card]:
    """Most votes first; ties keep creation order (oldest first).

    Cards sharing a created_at timestamp fall back to id, which is a random
    UUID: their relative order is stable across reads but not guaranteed to
    be insertion order.
    """
    return sorted(cards, key=lambda c: (-counts.get(c.id, 0), as_utc(c.created_at), c.id))


def summarize_retro(retro: Retrospective, template_name: Optional[str] = None, card_count: int = 0) -> RetroSummary:
    return RetroSummary(**_summary_fields(retro, template_name, card_count))


def _summary_fields(retro: Retrospective, template_name: Optional[str], card_count: int) -> dict:
    return dict(
        id=retro.id,
        name=retro.name,
        team_id=retro.team_id,
        template_id=retro.template_id,
        template_name=template_name,
        status=_value(retro.status),
        is_anonymous=retro.is_anonymous,
        vote_type=_value(retro.vote_type),
        max_votes_per_user=1 if VoteType(retro.vote_type) == VoteType.SINGLE else retro.max_votes_per_user,
        timer_duration=retro.timer_duration,
        timer_ends_at=_ts(retro.timer_ends_at),
        created_by_id=retro.created_by_id,
        created_at=_ts(retro.created_at),
        completed_at=_ts(retro.completed_at),
        card_count=card_count,
    )


def action_item_out(item: ActionItem, assignee_name: Optional[str] = None) -> ActionItemOut:
    return ActionItemOut(
        id=item.id,
        retro_id=item.retro_id,
        card_id=item.card_id,
        title=item.title,
        description=item.description,
        assignee_id=item.assignee_id,
        assignee_name=assignee_name,
        status=_value(item.status or ActionItemStatus.PENDING),
        due_date=_ts(item.due_date),
        created_by_id=item.created_by_id,
        created_at=_ts(item.created_at),
    )


async def _fetch_all(db: AsyncSession, stmt):
    result = await db.execute(stmt.execution_options(populate_existing=True))
    return list(result.scalars().all())


# ============================================================
# BUILDER
# ============================================================

async def build_retro_view(
    db: AsyncSession,
    oracle: MembershipOracle,
    retro: Retrospective,
    viewer_id: str,
    now: Optional[datetime] = None,
) -> RetroView:
    status = RetroStatus(retro.status)

    template_name = (await db.execute(
        select(Template.name).where(Template.id == retro.template_id)
    )).scalar_one_or_none()
    columns = await _fetch_all(db, select(TemplateColumn).where(
        TemplateColumn.template_id == retro.template_id,
    ).order_by(TemplateColumn.order.asc()))
    cards = await _fetch_all(db, select(Card).where(Card.retro_id == retro.id))
    participants = await _fetch_all(db, select(RetroParticipant).where(
        RetroParticipant.retro_id == retro.id,
    ).order_by(RetroParticipant.joined_at.asc()))
    action_items = await _fetch_all(db, select(ActionItem).where(
        ActionItem.retro_id == retro.id,
    ).order_by(ActionItem.created_at.asc()))

    comments_by_card: Dict[str, List[CardComment]] = {}
    show_comments = status in COMMENT_VISIBLE_PHASES
    if show_comments:
        comments = await _fetch_all(db, select(CardComment).join(Card, Card.id == CardComment.card_id).where(
            Card.retro_id == retro.id,
        ))
        for comment in sorted(comments, key=lambda c: (as_utc(c.created_at), c.id)):
            comments_by_card.setdefault(comment.card_id, []).append(comment)

    counts = await card_vote_counts(db, retro.id)
    my_votes = await voted_card_ids(db, retro.id, viewer_id)

    user_ids = {c.author_id for c in cards}
    user_ids.update(p.user_id for p in participants)
    user_ids.update(c.author_id for group in comments_by_card.values() for c in group)
    user_ids.update(i.assignee_id for i in action_items if i.assignee_id)
    displays = await oracle.get_user_displays(user_ids)

    def comment_out(comment: CardComment) -> CommentOut:
        return CommentOut(
            id=comment.id,
            card_id=comment.card_id,
            content=comment.content,
            author=project_author(comment.author_id, retro.is_anonymous, viewer_id, displays),
            is_own=comment.author_id == viewer_id,
            created_at=_ts(comment.created_at),
        )

    def card_out(card: Card) -> CardOut:
        return CardOut(
            id=card.id,
            column_id=card.column_id,
            content=card.content,
            author=project_author(card.author_id, retro.is_anonymous, viewer_id, displays),
            vote_count=counts.get(card.id, 0),
            has_voted=card.id in my_votes,
            is_own=card.author_id == viewer_id,
            created_at=_ts(card.created_at),
            comments=[comment_out(c) for c in comments_by_card.get(card.id, [])] if show_comments else None,
        )

    cards_by_column: Dict[str, List[Card]] = {}
    for card in cards:
        cards_by_column.setdefault(card.column_id, []).append(card)

    column_views = [
        ColumnView(
            id=col.id,
            name=col.name,
            emoji=col.emoji,
            prompt=col.prompt,
            order=col.order,
            cards=[card_out(c) for c in rank_cards(cards_by_column.get(col.id, []), counts)],
        )
        for col in columns
    ]

    quota = vote_quota(retro)
    following = next_phase(status)

    return RetroView(
        **_summary_fields(retro, template_name, len(cards)),
        next_status=following.value if following else None,
        time_remaining=time_remaining(retro, now),
        can_control=await can_control(oracle, retro, viewer_id),
        has_joined=any(p.user_id == viewer_id for p in participants),
        participants=[
            ParticipantOut(
                user_id=p.user_id,
                name=displays[p.user_id].name if p.user_id in displays else "Unknown user",
                avatar_url=displays[p.user_id].avatar_url if p.user_id in displays else None,
                joined_at=_ts(p.joined_at),
            )
            for p in participants
        ],
        columns=column_views,
        action_items=[
            action_item_out(i, displays[i.assignee_id].name if i.assignee_id in displays else None)
            for i in action_items
        ],
        my_vote_count=len(my_votes),
        vote_quota=quota,
        remaining_votes=max(0, quota - len(my_votes)),
    )
