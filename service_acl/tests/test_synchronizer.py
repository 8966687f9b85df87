"""
Unit tests for group conversation creation and ACL fan-out.
"""

import pytest

from shared.errors import StoreUnavailableError
from service_acl.app.groups.synchronizer import GroupACLSynchronizer
from service_acl.app.models import (
    ACLRecord, ClientIdentity, GroupConversation, Mapping, TopicDirection
)


def _seed(acl_store, *client_ids):
    for client_id in client_ids:
        identity = ClientIdentity(client_id=client_id, username=f"user-{client_id}", passhash="h")
        acl_store.records[client_id] = ACLRecord.default_for(identity, "private")


class TestGroupACLSynchronizer:
    """Test cases for GroupACLSynchronizer."""

    @pytest.fixture
    def synchronizer(self, context):
        return GroupACLSynchronizer(context)

    @pytest.mark.asyncio
    async def test_members_exclude_unknown_and_duplicate_requester(self, synchronizer, identity_cache, acl_store):
        """Unknown handles drop out and the requester appears once."""
        identity_cache.add_mapping("a", "u2")
        identity_cache.add_mapping("b", "u1")
        _seed(acl_store, "u1", "u2")

        group = await synchronizer.create_group("u1", "team", ["a", "b", "ghost"])

        assert set(group.members) == {"u1", "u2"}
        assert len(group.members) == 2
        assert group.members[-1] == "u1"
        assert acl_store.groups == [group]

    @pytest.mark.asyncio
    async def test_duplicate_handles_resolve_once(self, synchronizer, identity_cache, acl_store):
        """Two handles mapping to the same client id give one member."""
        identity_cache.add_mapping("a", "u2")
        identity_cache.add_mapping("a-alias", "u2")
        _seed(acl_store, "u1", "u2")

        group = await synchronizer.create_group("u1", "team", ["a", "a-alias", "a"])

        assert group.members == ["u2", "u1"]

    @pytest.mark.asyncio
    async def test_requester_only_group(self, synchronizer, acl_store):
        """No resolvable members still yields a group with the requester."""
        _seed(acl_store, "u1")

        group = await synchronizer.create_group("u1", "solo", ["ghost"])

        assert group.members == ["u1"]
        assert len(acl_store.applied) == 2

    @pytest.mark.asyncio
    async def test_fan_out_grants_one_pair_per_member(self, synchronizer, identity_cache, acl_store):
        """Each member gets its own publish slot and the shared subscribe wildcard."""
        identity_cache.add_mapping("a", "u2")
        _seed(acl_store, "u1", "u2")

        group = await synchronizer.create_group("u1", "team", ["a"])
        gid = group.group_id

        publish = [(g.client_id, g.pattern) for g in acl_store.applied if g.direction is TopicDirection.PUBLISH]
        subscribe = [(g.client_id, g.pattern) for g in acl_store.applied if g.direction is TopicDirection.SUBSCRIBE]

        assert sorted(publish) == [("u1", f"groups/{gid}/u1"), ("u2", f"groups/{gid}/u2")]
        assert sorted(subscribe) == [("u1", f"groups/{gid}/+"), ("u2", f"groups/{gid}/+")]
        assert f"groups/{gid}/u2" in acl_store.records["u2"].publish_acl
        assert f"groups/{gid}/+" in acl_store.records["u1"].subscribe_acl

    def test_build_grants_for_known_group(self, synchronizer):
        """Grant patterns follow the configured prefix and group id."""
        group = GroupConversation(group_id="g1", name="team", members=["u1", "u2"])

        grants = synchronizer.build_grants(group)

        assert [(g.client_id, g.direction, g.pattern) for g in grants] == [
            ("u1", TopicDirection.PUBLISH, "groups/g1/u1"),
            ("u1", TopicDirection.SUBSCRIBE, "groups/g1/+"),
            ("u2", TopicDirection.PUBLISH, "groups/g1/u2"),
            ("u2", TopicDirection.SUBSCRIBE, "groups/g1/+"),
        ]

    @pytest.mark.asyncio
    async def test_reapplying_grants_does_not_duplicate(self, synchronizer, acl_store):
        """Replaying a fan-out leaves each pattern present once."""
        _seed(acl_store, "u1", "u2")
        group = GroupConversation(group_id="g1", name="team", members=["u1", "u2"])
        grants = synchronizer.build_grants(group)

        first = await acl_store.apply_grants(grants)
        second = await acl_store.apply_grants(grants)

        assert first == 4
        assert second == 0
        assert acl_store.records["u1"].subscribe_acl.count("groups/g1/+") == 1

    @pytest.mark.asyncio
    async def test_group_metrics(self, synchronizer, acl_store, metrics):
        """Group creation and grants are counted."""
        _seed(acl_store, "u1")

        await synchronizer.create_group("u1", "solo", [])

        assert metrics.get_sample_value("groups_created_total") == 1.0
        assert metrics.get_sample_value("acl_grants_total", {"direction": "publish"}) == 1.0
        assert metrics.get_sample_value("acl_grants_total", {"direction": "subscribe"}) == 1.0

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, synchronizer, acl_store):
        """Persisting failures surface to the caller with no grants applied."""
        async def broken(group):
            raise StoreUnavailableError("postgres", "down")

        acl_store.create_group_conversation = broken

        with pytest.raises(StoreUnavailableError):
            await synchronizer.create_group("u1", "team", [])
        assert acl_store.applied == []

    @pytest.mark.asyncio
    async def test_resolve_mappings(self, synchronizer, identity_cache):
        """Only resolvable handles are returned, in request order."""
        identity_cache.add_mapping("a", "u2")
        identity_cache.add_mapping("b", "u3")

        mappings = await synchronizer.resolve_mappings(["b", "ghost", "a"])

        assert mappings == [
            Mapping(original_user_id="b", internal_user_id="u3"),
            Mapping(original_user_id="a", internal_user_id="u2"),
        ]

    @pytest.mark.asyncio
    async def test_grant_failure_keeps_group_row(self, synchronizer, identity_cache, acl_store, metrics):
        """A failed fan-out propagates and leaves the persisted group without grants."""
        async def broken(grants):
            raise StoreUnavailableError("postgres", "down")

        identity_cache.add_mapping("a", "u2")
        _seed(acl_store, "u1", "u2")
        acl_store.apply_grants = broken

        with pytest.raises(StoreUnavailableError):
            await synchronizer.create_group("u1", "team", ["a"])

        assert len(acl_store.groups) == 1
        assert acl_store.groups[0].members == ["u2", "u1"]
        assert acl_store.records["u1"].publish_acl == []
        assert acl_store.records["u2"].subscribe_acl == ["private/u2/+"]
        assert metrics.get_sample_value("groups_created_total") == 0.0
