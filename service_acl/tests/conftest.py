"""
Shared fixtures and in-memory collaborators for ACL service tests.
"""

from typing import Dict, List, Optional

import pytest

from shared.errors import ConflictError, InvalidCredentialError
from shared.metrics import MetricsCollector
from service_acl.app.auth.token_format import TokenFormatChecker
from service_acl.app.context import ServiceContext
from service_acl.app.models import ACLRecord, ClientIdentity, GroupConversation, TopicDirection, TopicGrant


class FakeIdentityCache:
    """Dictionary-backed stand-in for RedisIdentityCache."""

    def __init__(self):
        self.tokens: Dict[str, ClientIdentity] = {}
        self.users: Dict[str, ClientIdentity] = {}
        self.writes: List[str] = []

    async def get_token_identity(self, credential: str) -> Optional[ClientIdentity]:
        return self.tokens.get(credential)

    async def set_token_identity(self, credential: str, identity: ClientIdentity) -> None:
        self.writes.append(f"token:{credential}")
        self.tokens[credential] = identity

    async def get_user_identity(self, username: str) -> Optional[ClientIdentity]:
        return self.users.get(username)

    async def set_user_identity(self, identity: ClientIdentity) -> None:
        self.writes.append(f"mapping:{identity.username}")
        self.users[identity.username] = identity

    async def resolve_mapping(self, handle: str) -> Optional[str]:
        identity = self.users.get(handle)
        return identity.client_id if identity else None

    def add_mapping(self, handle: str, client_id: str):
        self.users[handle] = ClientIdentity(client_id=client_id, username=handle, passhash="h")

    async def health_check(self) -> bool:
        return True


class FakeACLStore:
    """Dictionary-backed stand-in for PostgreSQLACLStore."""

    def __init__(self):
        self.records: Dict[str, ACLRecord] = {}
        self.groups: List[GroupConversation] = []
        self.applied: List[TopicGrant] = []
        self.passhash_updates: List[tuple] = []

    async def create_acl(self, record: ACLRecord) -> None:
        if record.client_id in self.records:
            raise ConflictError(details={"client_id": record.client_id})
        self.records[record.client_id] = record

    async def get_acl(self, client_id: str) -> Optional[ACLRecord]:
        return self.records.get(client_id)

    async def grant_topic_access(self, client_id: str, direction: TopicDirection, pattern: str) -> bool:
        record = self.records.get(client_id)
        if record is None:
            return False
        patterns = record.publish_acl if direction is TopicDirection.PUBLISH else record.subscribe_acl
        if pattern in patterns:
            return False
        patterns.append(pattern)
        return True

    async def apply_grants(self, grants) -> int:
        changed = 0
        for grant in grants:
            self.applied.append(grant)
            if await self.grant_topic_access(grant.client_id, grant.direction, grant.pattern):
                changed += 1
        return changed

    async def update_password_hash(self, client_id: str, passhash: str) -> None:
        self.passhash_updates.append((client_id, passhash))
        if client_id in self.records:
            self.records[client_id].passhash = passhash

    async def create_group_conversation(self, group: GroupConversation) -> None:
        self.groups.append(group)

    async def health_check(self) -> bool:
        return True


class FakeVerifier:
    """Verification endpoint stand-in keyed by credential."""

    def __init__(self):
        self.identities: Dict[str, ClientIdentity] = {}
        self.calls: List[str] = []

    async def verify(self, credential: str) -> ClientIdentity:
        self.calls.append(credential)
        identity = self.identities.get(credential)
        if identity is None:
            raise InvalidCredentialError()
        return identity

    async def health_check(self) -> bool:
        return True


@pytest.fixture
def identity_cache():
    return FakeIdentityCache()


@pytest.fixture
def acl_store():
    return FakeACLStore()


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def metrics():
    return MetricsCollector("acl")


@pytest.fixture
def context(identity_cache, acl_store, verifier, metrics):
    """ServiceContext wired to in-memory collaborators."""
    return ServiceContext(
        identity_cache=identity_cache,
        acl_store=acl_store,
        verifier=verifier,
        token_checker=TokenFormatChecker(r"tok-[A-Za-z0-9]+"),
        group_topic_prefix="groups",
        private_topic_prefix="private",
        metrics=metrics,
    )
