"""
Data models for the ACL service.
"""

from typing import Dict, Optional, List
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class CacheOutcome(str, Enum):
    """Result of reconciling a credential against the identity cache."""
    FRESH = "fresh"
    CACHED = "cached"
    UPDATED = "updated"


class TopicDirection(str, Enum):
    """ACL direction; the value is the ACL record column it writes to."""
    PUBLISH = "publish_acl"
    SUBSCRIBE = "subscribe_acl"


@dataclass(frozen=True)
class ClientIdentity:
    """Broker-facing identity produced by a successful verification."""
    client_id: str
    username: str
    passhash: str

    def to_cache_fields(self) -> Dict[str, str]:
        return {
            "internalWaveUserID": self.client_id,
            "username": self.username,
            "passhash": self.passhash,
        }

    @classmethod
    def from_cache_fields(cls, fields: Dict[str, str]) -> Optional["ClientIdentity"]:
        client_id = fields.get("internalWaveUserID")
        if not client_id:
            return None
        return cls(
            client_id=client_id,
            username=fields.get("username", ""),
            passhash=fields.get("passhash", ""),
        )


@dataclass(frozen=True)
class ReconcileResult:
    """Tagged reconciliation result; callers branch on ``outcome``."""
    identity: ClientIdentity
    outcome: CacheOutcome


@dataclass(frozen=True)
class TopicGrant:
    """A single topic pattern granted to a client in one direction."""
    client_id: str
    direction: TopicDirection
    pattern: str


@dataclass
class ACLRecord:
    """VerneMQ ACL record, one per client id."""
    client_id: str
    username: str
    passhash: str
    publish_acl: List[str] = field(default_factory=list)
    subscribe_acl: List[str] = field(default_factory=list)
    mountpoint: str = ""

    @classmethod
    def default_for(cls, identity: ClientIdentity, private_topic_prefix: str, mountpoint: str = "") -> "ACLRecord":
        """Build the record seeded on first connection.

        The client may read its own private inbox; publish rights are
        granted later, per conversation.
        """
        return cls(
            client_id=identity.client_id,
            username=identity.username,
            passhash=identity.passhash,
            publish_acl=[],
            subscribe_acl=[f"{private_topic_prefix}/{identity.client_id}/+"],
            mountpoint=mountpoint,
        )


@dataclass
class GroupConversation:
    """Group conversation; members are unique client ids, creator included."""
    group_id: str
    name: str
    members: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class Mapping:
    """Link from an external user handle to an internal client id."""
    original_user_id: str
    internal_user_id: str


class VerificationResponse(BaseModel):
    """Payload returned by the identity verification endpoint."""
    client_id: str = Field(..., min_length=1, description="Internal broker client id")
    username: str = Field(..., min_length=1, description="External user handle")
    passhash: str = Field(..., min_length=1, description="Broker password hash")


class ACLProvisionResponse(BaseModel):
    """Response model for ACL seeding."""
    client_id: str
    outcome: CacheOutcome
    created: bool


class ACLRecordResponse(BaseModel):
    """Response model for a stored ACL record."""
    client_id: str
    username: str
    publish_acl: List[str]
    subscribe_acl: List[str]
    mountpoint: str = ""


class GroupConversationRequest(BaseModel):
    """Request model for group conversation creation."""
    name: str = Field(..., min_length=1, description="Conversation name")
    members: List[str] = Field(default_factory=list, description="External member handles")


class GroupConversationResponse(BaseModel):
    """Response model for a created group conversation."""
    group_id: str
    name: str
    members: List[str]
    created_at: datetime


class MappingRequest(BaseModel):
    """Request model for mapping resolution."""
    user_ids: List[str] = Field(default_factory=list, description="External user handles")


class MappingResponse(BaseModel):
    """Response model for a single resolved mapping."""
    original_user_id: str
    internal_user_id: str


class MappingListResponse(BaseModel):
    """Response model for mapping resolution."""
    mappings: List[MappingResponse]
    unresolved: List[str] = Field(default_factory=list)

    @classmethod
    def from_mappings(cls, requested: List[str], mappings: List[Mapping]) -> "MappingListResponse":
        resolved = {m.original_user_id for m in mappings}
        return cls(
            mappings=[
                MappingResponse(original_user_id=m.original_user_id, internal_user_id=m.internal_user_id)
                for m in mappings
            ],
            unresolved=[user_id for user_id in requested if user_id not in resolved],
        )

