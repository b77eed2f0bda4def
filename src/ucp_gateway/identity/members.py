"""Member lookup and OpenID Connect userinfo mapping."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from ..checkout.models import Address
from .models import OAuthScope


@dataclass(slots=True)
class LoyaltyInfo:
    tier: str
    points: int


@dataclass(slots=True)
class Member:
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    picture_url: Optional[str] = None
    addresses: List[Address] = field(default_factory=list)
    loyalty: Optional[LoyaltyInfo] = None


class MemberDirectory(Protocol):
    """Merchant member backend (external collaborator)."""

    async def get_member(self, member_id: str) -> Optional[Member]:
        ...

    async def resolve_member_id(self, client_id: str) -> str:
        """Member identity for an authorize request (login happens upstream)."""
        ...


class DemoMemberDirectory:
    """Fixed member data for dev and sandbox."""

    async def get_member(self, member_id: str) -> Optional[Member]:
        return Member(
            id=member_id,
            email="member@example.com",
            first_name="John",
            last_name="Doe",
            picture_url="https://example.com/photo.jpg",
            addresses=[
                Address(
                    line1="123 Main Street",
                    city="New York",
                    state="NY",
                    postal_code="10001",
                    country="US",
                )
            ],
            loyalty=LoyaltyInfo(tier="gold", points=1500),
        )

    async def resolve_member_id(self, client_id: str) -> str:
        return f"member_{client_id}"


def map_member_to_userinfo(member: Member, scopes: List[str]) -> Dict[str, Any]:
    """Scope-gated OIDC claims; ``sub`` and ``ucp_member_id`` are always present."""
    userinfo: Dict[str, Any] = {"sub": member.id, "ucp_member_id": member.id}

    if OAuthScope.PROFILE.value in scopes:
        if member.first_name or member.last_name:
            userinfo["name"] = " ".join(p for p in (member.first_name, member.last_name) if p)
            userinfo["given_name"] = member.first_name
            userinfo["family_name"] = member.last_name
        if member.picture_url:
            userinfo["picture"] = member.picture_url

    if OAuthScope.EMAIL.value in scopes and member.email:
        userinfo["email"] = member.email
        userinfo["email_verified"] = True

    if OAuthScope.ADDRESSES_READ.value in scopes:
        userinfo["ucp_saved_addresses"] = [a.to_dict() for a in member.addresses]

    if OAuthScope.LOYALTY_READ.value in scopes and member.loyalty:
        userinfo["ucp_loyalty_tier"] = member.loyalty.tier
        userinfo["ucp_loyalty_points"] = member.loyalty.points

    return userinfo
