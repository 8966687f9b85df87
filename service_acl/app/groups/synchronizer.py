"""
Group conversation creation and ACL fan-out.
"""

import uuid
from typing import Iterable, List

from shared.logging import get_logger
from ..context import ServiceContext
from ..models import GroupConversation, Mapping, TopicDirection, TopicGrant


class GroupACLSynchronizer:
    """Creates group conversations and grants members access to them.

    Every member may publish on ``<prefix>/<group_id>/<member_id>`` and
    subscribe to ``<prefix>/<group_id>/+``, so each member owns one slot and
    reads all of them.
    """

    def __init__(self, context: ServiceContext):
        self.cache = context.identity_cache
        self.acl_store = context.acl_store
        self.topic_prefix = context.group_topic_prefix
        self.metrics = context.metrics
        self.logger = get_logger("acl.groups.synchronizer")

    async def create_group(self, requester_client_id: str, name: str,
                           candidate_handles: Iterable[str]) -> GroupConversation:
        members = await self._resolve_members(requester_client_id, candidate_handles)
        group = GroupConversation(
            group_id=str(uuid.uuid4()),
            name=name,
            members=members,
        )

        await self.acl_store.create_group_conversation(group)

        grants = self.build_grants(group)
        # grants are idempotent, so a retried fan-out converges
        changed = await self.acl_store.apply_grants(grants)
        if changed < len(grants):
            self.logger.warning(
                "Some grants changed no ACL record",
                group_id=group.group_id,
                requested=len(grants),
                changed=changed,
            )

        if self.metrics is not None:
            self.metrics.increment_counter("groups_created_total")
            for grant in grants:
                self.metrics.increment_counter("acl_grants_total", direction=grant.direction.name.lower())

        self.logger.info("Group conversation synchronized", group_id=group.group_id, members=len(members))
        return group

    def build_grants(self, group: GroupConversation) -> List[TopicGrant]:
        """One publish and one subscribe grant per member."""
        base = f"{self.topic_prefix}/{group.group_id}"
        grants = []
        for member in group.members:
            grants.append(TopicGrant(member, TopicDirection.PUBLISH, f"{base}/{member}"))
            grants.append(TopicGrant(member, TopicDirection.SUBSCRIBE, f"{base}/+"))
        return grants

    async def resolve_mappings(self, handles: Iterable[str]) -> List[Mapping]:
        """Mappings for the handles known to the identity cache."""
        mappings = []
        for handle in handles:
            client_id = await self.cache.resolve_mapping(handle)
            if client_id is not None:
                mappings.append(Mapping(original_user_id=handle, internal_user_id=client_id))
        return mappings

    async def _resolve_members(self, requester_client_id: str, handles: Iterable[str]) -> List[str]:
        members: List[str] = []
        dropped = []
        for handle in handles:
            client_id = await self.cache.resolve_mapping(handle)
            if client_id is None:
                dropped.append(handle)
                continue
            # the requester is appended once below
            if client_id == requester_client_id or client_id in members:
                continue
            members.append(client_id)

        if dropped:
            self.logger.info("Dropped unknown group members", handles=dropped)

        members.append(requester_client_id)
        return members
