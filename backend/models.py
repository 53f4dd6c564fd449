# models.py — Database models for the RetroBoard service
# - UUID string primary keys everywhere
# - Organisations, users and team membership (read by the membership oracle)
# - Template catalog (templates + ordered columns)
# - Retrospective session store: retros, participants, cards, votes, comments
# - Action items raised while discussing

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, Boolean, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def as_utc(dt):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    SUPER_ADMIN = "super_admin"
    ORG_ADMIN = "org_admin"
    USER = "user"


class TeamRole(str, PyEnum):
    LEAD = "lead"
    MEMBER = "member"


class RetroStatus(str, PyEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    VOTING = "voting"
    DISCUSSING = "discussing"
    COMPLETED = "completed"


class VoteType(str, PyEnum):
    SINGLE = "single"
    MULTI = "multi"


class ActionItemStatus(str, PyEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# ============================================================
# ORGANISATIONS & USERS
# ============================================================

class Organisation(Base):
    __tablename__ = "organisations"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False, index=True)
    slug = Column(String, unique=True, nullable=False, index=True)
    logo_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    users = relationship("User", back_populates="organisation")
    teams = relationship("Team", back_populates="organisation")


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    display_name = Column(String, nullable=False, default="")
    avatar_url = Column(String, nullable=True)
    role = Column(SQLEnum(UserRole), default=UserRole.USER, nullable=False, index=True)
    organisation_id = Column(String, ForeignKey("organisations.id"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    organisation = relationship("Organisation", back_populates="users")

    __table_args__ = (
        Index("idx_user_org_active", "organisation_id", "is_active"),
    )


# ============================================================
# TEAMS
# ============================================================

class Team(Base):
    __tablename__ = "teams"

    id = Column(String, primary_key=True, default=new_uuid)
    organisation_id = Column(String, ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    emoji = Column(String, default="👥")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    organisation = relationship("Organisation", back_populates="teams")
    members = relationship("TeamMember", back_populates="team")
    retrospectives = relationship("Retrospective", back_populates="team")


class TeamMember(Base):
    __tablename__ = "team_members"

    id = Column(String, primary_key=True, default=new_uuid)
    team_id = Column(String, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(SQLEnum(TeamRole), default=TeamRole.MEMBER, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    team = relationship("Team", back_populates="members")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("team_id", "user_id", name="uq_team_member"),
    )


# ============================================================
# TEMPLATE CATALOG
# ============================================================

class Template(Base):
    """Retrospective template; built-ins have no owning organisation"""
    __tablename__ = "templates"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_built_in = Column(Boolean, default=False, nullable=False)
    organisation_id = Column(String, ForeignKey("organisations.id", ondelete="CASCADE"), nullable=True, index=True)
    created_by_id = Column(String, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    columns = relationship(
        "TemplateColumn", back_populates="template",
        order_by="TemplateColumn.order", cascade="all, delete-orphan",
    )


class TemplateColumn(Base):
    """Feedback column of a template (e.g. "Liked")"""
    __tablename__ = "template_columns"

    id = Column(String, primary_key=True, default=new_uuid)
    template_id = Column(String, ForeignKey("templates.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    emoji = Column(String, nullable=True)
    prompt = Column(Text, nullable=True)
    order = Column(Integer, nullable=False, default=0)

    template = relationship("Template", back_populates="columns")

    __table_args__ = (
        UniqueConstraint("template_id", "order", name="uq_template_column_order"),
    )


# ============================================================
# RETROSPECTIVES
# ============================================================

class Retrospective(Base):
    __tablename__ = "retrospectives"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    team_id = Column(String, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    template_id = Column(String, ForeignKey("templates.id"), nullable=False)
    created_by_id = Column(String, ForeignKey("users.id"), nullable=False)
    status = Column(SQLEnum(RetroStatus), default=RetroStatus.DRAFT, nullable=False)
    is_anonymous = Column(Boolean, default=True, nullable=False)
    vote_type = Column(SQLEnum(VoteType), default=VoteType.MULTI, nullable=False)
    max_votes_per_user = Column(Integer, default=3, nullable=False)
    timer_duration = Column(Integer, nullable=True)  # seconds, card-writing phase only
    timer_started_at = Column(DateTime(timezone=True), nullable=True)
    timer_ends_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    team = relationship("Team", back_populates="retrospectives")
    template = relationship("Template")
    created_by = relationship("User")
    participants = relationship("RetroParticipant", back_populates="retro", cascade="all, delete-orphan")
    cards = relationship("Card", back_populates="retro", cascade="all, delete-orphan")
    action_items = relationship("ActionItem", back_populates="retro", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_retro_team_created", "team_id", "created_at"),
    )


class RetroParticipant(Base):
    __tablename__ = "retro_participants"

    id = Column(String, primary_key=True, default=new_uuid)
    retro_id = Column(String, ForeignKey("retrospectives.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    joined_at = Column(DateTime(timezone=True), default=utcnow)

    retro = relationship("Retrospective", back_populates="participants")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("retro_id", "user_id", name="uq_retro_participant"),
    )


class Card(Base):
    """A single piece of feedback in one template column"""
    __tablename__ = "cards"

    id = Column(String, primary_key=True, default=new_uuid)
    retro_id = Column(String, ForeignKey("retrospectives.id", ondelete="CASCADE"), nullable=False, index=True)
    column_id = Column(String, ForeignKey("template_columns.id"), nullable=False)
    author_id = Column(String, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    retro = relationship("Retrospective", back_populates="cards")
    author = relationship("User")
    votes = relationship("Vote", back_populates="card", cascade="all, delete-orphan")
    comments = relationship(
        "CardComment", back_populates="card",
        order_by="CardComment.created_at", cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_card_retro_column", "retro_id", "column_id"),
    )


class Vote(Base):
    __tablename__ = "votes"

    id = Column(String, primary_key=True, default=new_uuid)
    card_id = Column(String, ForeignKey("cards.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    card = relationship("Card", back_populates="votes")

    __table_args__ = (
        UniqueConstraint("card_id", "user_id", name="uq_vote_card_user"),
    )


class CardComment(Base):
    __tablename__ = "card_comments"

    id = Column(String, primary_key=True, default=new_uuid)
    card_id = Column(String, ForeignKey("cards.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    card = relationship("Card", back_populates="comments")
    author = relationship("User")


class ActionItem(Base):
    """Follow-up agreed during discussion, optionally tied to a card"""
    __tablename__ = "action_items"

    id = Column(String, primary_key=True, default=new_uuid)
    retro_id = Column(String, ForeignKey("retrospectives.id", ondelete="CASCADE"), nullable=False, index=True)
    card_id = Column(String, ForeignKey("cards.id", ondelete="SET NULL"), nullable=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    assignee_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_by_id = Column(String, ForeignKey("users.id"), nullable=False)
    status = Column(SQLEnum(ActionItemStatus), default=ActionItemStatus.PENDING, nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    retro = relationship("Retrospective", back_populates="action_items")
    assignee = relationship("User", foreign_keys=[assignee_id])
