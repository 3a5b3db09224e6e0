# ===============================================================
# utils/permissions.py
# ===============================================================
"""
Role checks for team features.

`role` is the account-wide role (`admin` marks a super admin);
`team_role` is the caller's role in the team being acted on
(`owner`, `admin`, `member` or None for non-members).
"""
import re
from dataclasses import dataclass
from typing import Optional

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


@dataclass
class Actor:
    id: str
    role: str = "user"
    team_role: Optional[str] = None


def is_super_admin(user: Optional[Actor]) -> bool:
    return bool(user) and user.role == "admin"


def is_team_owner(user: Optional[Actor]) -> bool:
    return bool(user) and user.team_role == "owner"


def is_team_admin(user: Optional[Actor]) -> bool:
    return bool(user) and user.team_role == "admin"


def can_view_team_member_details(user: Optional[Actor]) -> bool:
    """Names and emails of other members."""
    return is_team_owner(user) or is_team_admin(user)


def can_manage_team_members(user: Optional[Actor]) -> bool:
    return is_team_owner(user) or is_team_admin(user)


def can_view_team_invitations(user: Optional[Actor]) -> bool:
    return is_super_admin(user) or is_team_owner(user) or is_team_admin(user)


def can_modify_team_member(user: Optional[Actor], target_role: str, target_user_id: str) -> bool:
    """Suspend / reinstate / remove. Owners and the caller themself are never targets."""
    if not can_manage_team_members(user):
        return False
    if not user.id or not target_user_id:
        return False
    if not UUID_PATTERN.match(str(target_user_id)):
        return False
    if target_role == "owner":
        return False
    if str(target_user_id) == str(user.id):
        return False
    return True


def member_display_permissions(user: Optional[Actor], target_user_id: str) -> dict:
    return {
        "can_view_name": True,
        "can_view_email": can_view_team_member_details(user) or (
            bool(user) and str(target_user_id) == str(user.id)
        ),
        "can_view_role": True,
        "can_view_status": True,
        "can_view_join_date": True,
        "can_modify": can_modify_team_member(user, "member", target_user_id),
    }
