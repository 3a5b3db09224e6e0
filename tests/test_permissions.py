import uuid

from utils.permissions import (
    Actor,
    can_modify_team_member,
    can_view_team_invitations,
    can_view_team_member_details,
    member_display_permissions,
)

OWNER = Actor(id=str(uuid.uuid4()), team_role="owner")
ADMIN = Actor(id=str(uuid.uuid4()), team_role="admin")
MEMBER = Actor(id=str(uuid.uuid4()), team_role="member")
SUPER = Actor(id=str(uuid.uuid4()), role="admin")


def test_detail_and_invitation_visibility():
    assert can_view_team_member_details(OWNER)
    assert can_view_team_member_details(ADMIN)
    assert not can_view_team_member_details(MEMBER)
    assert not can_view_team_member_details(None)

    assert can_view_team_invitations(SUPER)
    assert can_view_team_invitations(ADMIN)
    assert not can_view_team_invitations(MEMBER)


def test_modify_member_rules():
    target = str(uuid.uuid4())
    assert can_modify_team_member(OWNER, "member", target)
    assert can_modify_team_member(ADMIN, "admin", target)
    assert not can_modify_team_member(MEMBER, "member", target)
    # owners and self are never targets
    assert not can_modify_team_member(ADMIN, "owner", target)
    assert not can_modify_team_member(OWNER, "member", OWNER.id)
    # target must look like a user id
    assert not can_modify_team_member(OWNER, "member", "not-a-uuid")
    assert not can_modify_team_member(OWNER, "member", "")


def test_member_sees_only_own_email():
    other = str(uuid.uuid4())
    assert member_display_permissions(MEMBER, MEMBER.id)["can_view_email"]
    assert not member_display_permissions(MEMBER, other)["can_view_email"]
    assert member_display_permissions(ADMIN, other)["can_view_email"]
    assert member_display_permissions(ADMIN, other)["can_modify"]
