# ==============================================================
# handlers/teams.py — Team roster, invitations, member moderation
# ==============================================================
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db import get_session
from models import Team, TeamInvitation, TeamMember
from services.quiz_sessions import get_user_profile, team_role_for
from utils.permissions import (
    Actor,
    can_modify_team_member,
    can_view_team_invitations,
    member_display_permissions,
)
from utils.security import CurrentUser, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/teams", tags=["teams"])


def _parse_uuid(value: str, what: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"{what} not found")


async def _actor_for(session: AsyncSession, team_id: uuid.UUID, user: CurrentUser) -> Actor:
    profile = await get_user_profile(session, uuid.UUID(user.id))
    team_role = await team_role_for(session, team_id, uuid.UUID(user.id))
    return Actor(id=user.id, role=(profile.role if profile else "user"), team_role=team_role)


async def _load_team(session: AsyncSession, team_id: str) -> Team:
    team = await session.get(Team, _parse_uuid(team_id, "Team"))
    if not team:
        raise HTTPException(status_code=404, detail="Team not found")
    return team


def serialize_member(member: TeamMember, actor: Actor) -> dict:
    perms = member_display_permissions(actor, str(member.user_id))
    return {
        "id": str(member.id),
        "user_id": str(member.user_id),
        "full_name": member.full_name,
        "email": member.email if perms["can_view_email"] else None,
        "role": member.role,
        "status": member.status,
        "joined_at": member.joined_at.isoformat() if member.joined_at else None,
        "can_modify": can_modify_team_member(actor, member.role, str(member.user_id)),
    }


# -------------------------------------------------
# Roster
# -------------------------------------------------
@router.get("/{team_id}/members")
async def list_members(
    team_id: str,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    team = await _load_team(session, team_id)
    actor = await _actor_for(session, team.id, user)
    if actor.team_role is None:
        raise HTTPException(status_code=403, detail="Not a member of this team")

    result = await session.execute(
        select(TeamMember).where(TeamMember.team_id == team.id).order_by(TeamMember.joined_at)
    )
    members = result.scalars().all()
    return {
        "team_id": str(team.id),
        "name": team.name,
        "member_count": len(members),
        "max_members": team.max_members,
        "members": [serialize_member(m, actor) for m in members],
    }


@router.get("/{team_id}/invitations")
async def list_invitations(
    team_id: str,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    team = await _load_team(session, team_id)
    actor = await _actor_for(session, team.id, user)
    if not can_view_team_invitations(actor):
        raise HTTPException(status_code=403, detail="Not allowed to view invitations")

    result = await session.execute(
        select(TeamInvitation)
        .where(TeamInvitation.team_id == team.id, TeamInvitation.status == "pending")
        .order_by(TeamInvitation.created_at.desc())
    )
    return {
        "invitations": [
            {
                "id": str(inv.id),
                "email": inv.email,
                "role": inv.role,
                "status": inv.status,
                "expires_at": inv.expires_at.isoformat() if inv.expires_at else None,
            }
            for inv in result.scalars().all()
        ]
    }


# -------------------------------------------------
# Moderation
# -------------------------------------------------
async def _set_member_status(session: AsyncSession, team_id: str, member_id: str,
                             user: CurrentUser, status: str) -> dict:
    team = await _load_team(session, team_id)
    actor = await _actor_for(session, team.id, user)

    result = await session.execute(
        select(TeamMember).where(
            TeamMember.team_id == team.id,
            TeamMember.user_id == _parse_uuid(member_id, "Member"),
        )
    )
    member = result.scalar_one_or_none()
    if not member:
        raise HTTPException(status_code=404, detail="Member not found")

    target_role = "owner" if str(team.owner_id) == str(member.user_id) else member.role
    if not can_modify_team_member(actor, target_role, str(member.user_id)):
        raise HTTPException(status_code=403, detail="Not allowed to modify this member")

    member.status = status
    await session.commit()
    logger.info(f"👥 Team {team.id}: member {member.user_id} → {status} (by {actor.id})")
    return serialize_member(member, actor)


@router.post("/{team_id}/members/{member_id}/suspend")
async def suspend_member(
    team_id: str,
    member_id: str,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return {"member": await _set_member_status(session, team_id, member_id, user, "suspended")}


@router.post("/{team_id}/members/{member_id}/reinstate")
async def reinstate_member(
    team_id: str,
    member_id: str,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return {"member": await _set_member_status(session, team_id, member_id, user, "active")}
