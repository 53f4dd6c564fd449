# membership.py — Membership oracle
# Read-only answers about team membership, roles and user display data.
# The engine consults it for every permission decision and never writes
# through it.
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Team, TeamMember, TeamRole, User, UserRole

ADMIN_ROLES = {UserRole.SUPER_ADMIN, UserRole.ORG_ADMIN}


@dataclass(frozen=True)
class UserDisplay:
    name: str
    avatar_url: Optional[str] = None


class MembershipOracle:
    """Membership lookups backed by the team/user tables"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _team_role(self, team_id: str, user_id: str) -> Optional[TeamRole]:
        stmt = select(TeamMember.role).where(
            TeamMember.team_id == team_id,
            TeamMember.user_id == user_id,
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def is_team_member(self, team_id: str, user_id: str) -> bool:
        return await self._team_role(team_id, user_id) is not None

    async def is_team_lead(self, team_id: str, user_id: str) -> bool:
        return await self._team_role(team_id, user_id) == TeamRole.LEAD

    async def team_organisation(self, team_id: str) -> Optional[str]:
        result = await self.db.execute(select(Team.organisation_id).where(Team.id == team_id))
        return result.scalar_one_or_none()

    async def is_org_admin(self, organisation_id: str, user_id: str) -> bool:
        stmt = select(User.role, User.organisation_id).where(
            User.id == user_id, User.deleted_at.is_(None),
        )
        row = (await self.db.execute(stmt)).one_or_none()
        if row is None:
            return False
        role, user_org = row
        if role not in ADMIN_ROLES:
            return False
        return role == UserRole.SUPER_ADMIN or user_org == organisation_id

    async def get_user_display(self, user_id: str) -> UserDisplay:
        displays = await self.get_user_displays([user_id])
        return displays.get(user_id, UserDisplay(name="Unknown user"))

    async def get_user_displays(self, user_ids: Iterable[str]) -> Dict[str, UserDisplay]:
        """Batch form of get_user_display, used by the read model"""
        ids = set(user_ids)
        if not ids:
            return {}
        stmt = select(User.id, User.display_name, User.email, User.avatar_url).where(User.id.in_(ids))
        result = await self.db.execute(stmt)
        return {
            uid: UserDisplay(name=name or email.split("@")[0], avatar_url=avatar)
            for uid, name, email, avatar in result.all()
        }
