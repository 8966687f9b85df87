"""
PostgreSQL persistence layer for broker ACLs and group conversations.
"""

import json
from typing import Iterable, List, Optional

import asyncpg

from shared.logging import get_logger
from shared.errors import ConflictError, StoreUnavailableError
from ..models import ACLRecord, GroupConversation, TopicDirection, TopicGrant

# asyncpg raises these for anything other than a rejected statement
_UNAVAILABLE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class PostgreSQLACLStore:
    """ACL store using the VerneMQ ``vmq_diversity`` PostgreSQL layout.

    Topic patterns are kept as JSON arrays of ``{"pattern": ...}`` objects,
    which is the shape the broker plugin reads. Grants use containment
    checks so each pattern appears at most once per record.
    """

    def __init__(self, dsn: str, mountpoint: str = "", pool: Optional[asyncpg.Pool] = None):
        self.dsn = dsn
        self.mountpoint = mountpoint
        self.logger = get_logger("acl.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = pool

    async def start(self):
        """Start the persistence layer."""
        try:
            if self.pool is None:
                self.pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=2,
                    max_size=10,
                    command_timeout=30
                )

            await self._create_tables()

            self.logger.info("PostgreSQL ACL store started")

        except _UNAVAILABLE_ERRORS as e:
            self.logger.error("Failed to start PostgreSQL ACL store", error=str(e))
            raise StoreUnavailableError("postgres", str(e))

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL ACL store stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS vmq_auth_acl (
                    mountpoint VARCHAR(10) NOT NULL DEFAULT '',
                    client_id VARCHAR(128) NOT NULL,
                    username VARCHAR(128) NOT NULL,
                    password VARCHAR(128),
                    publish_acl JSONB NOT NULL DEFAULT '[]',
                    subscribe_acl JSONB NOT NULL DEFAULT '[]',
                    CONSTRAINT vmq_auth_acl_primary_key PRIMARY KEY (mountpoint, client_id)
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS group_conversations (
                    group_id VARCHAR(64) PRIMARY KEY,
                    name VARCHAR(255) NOT NULL,
                    members JSONB NOT NULL DEFAULT '[]',
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)

    async def create_acl(self, record: ACLRecord) -> None:
        """Insert the ACL record for a client; a second insert is a conflict."""
        try:
            async with self.pool.acquire() as conn:
                await conn.execute("""
                    INSERT INTO vmq_auth_acl (
                        mountpoint, client_id, username, password, publish_acl, subscribe_acl
                    ) VALUES ($1, $2, $3, $4, $5::jsonb, $6::jsonb)
                """,
                    record.mountpoint, record.client_id, record.username, record.passhash,
                    _patterns_json(record.publish_acl), _patterns_json(record.subscribe_acl)
                )
        except asyncpg.UniqueViolationError:
            self.logger.info("ACL record already exists", client_id=record.client_id)
            raise ConflictError(
                "ACL record already exists",
                details={"client_id": record.client_id}
            )
        except _UNAVAILABLE_ERRORS as e:
            self.logger.error("Error creating ACL record", client_id=record.client_id, error=str(e))
            raise StoreUnavailableError("postgres", str(e))

        self.logger.info("ACL record created", client_id=record.client_id)

    async def get_acl(self, client_id: str) -> Optional[ACLRecord]:
        """Load the ACL record for a client."""
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow("""
                    SELECT * FROM vmq_auth_acl WHERE mountpoint = $1 AND client_id = $2
                """, self.mountpoint, client_id)
        except _UNAVAILABLE_ERRORS as e:
            self.logger.error("Error loading ACL record", client_id=client_id, error=str(e))
            raise StoreUnavailableError("postgres", str(e))

        if not row:
            return None
        return self._row_to_record(row)

    async def grant_topic_access(self, client_id: str, direction: TopicDirection, pattern: str) -> bool:
        """Add a topic pattern to a client's ACL unless it is already present.

        Returns True when the record changed. Unknown client ids are left
        untouched.
        """
        grant = TopicGrant(client_id=client_id, direction=direction, pattern=pattern)
        try:
            async with self.pool.acquire() as conn:
                return await self._apply_grant(conn, grant)
        except _UNAVAILABLE_ERRORS as e:
            self.logger.error("Error granting topic access", client_id=client_id, error=str(e))
            raise StoreUnavailableError("postgres", str(e))

    async def authorize_publishing(self, client_id: str, topic: str) -> bool:
        return await self.grant_topic_access(client_id, TopicDirection.PUBLISH, topic)

    async def apply_grants(self, grants: Iterable[TopicGrant]) -> int:
        """Apply grants in a single transaction; returns the number that changed a record."""
        grants = list(grants)
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    changed = 0
                    for grant in grants:
                        if await self._apply_grant(conn, grant):
                            changed += 1
        except _UNAVAILABLE_ERRORS as e:
            self.logger.error("Error applying grants", count=len(grants), error=str(e))
            raise StoreUnavailableError("postgres", str(e))

        self.logger.info("Grants applied", requested=len(grants), changed=changed)
        return changed

    async def update_password_hash(self, client_id: str, passhash: str) -> None:
        """Replace the stored password hash; no-op when the client is unknown."""
        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute("""
                    UPDATE vmq_auth_acl SET password = $3
                    WHERE mountpoint = $1 AND client_id = $2
                """, self.mountpoint, client_id, passhash)
        except _UNAVAILABLE_ERRORS as e:
            self.logger.error("Error updating password hash", client_id=client_id, error=str(e))
            raise StoreUnavailableError("postgres", str(e))

        if result == "UPDATE 0":
            self.logger.warning("Password hash update matched no ACL record", client_id=client_id)

    async def create_group_conversation(self, group: GroupConversation) -> None:
        """Insert a group conversation."""
        try:
            async with self.pool.acquire() as conn:
                await conn.execute("""
                    INSERT INTO group_conversations (group_id, name, members, created_at)
                    VALUES ($1, $2, $3::jsonb, $4)
                """, group.group_id, group.name, json.dumps(group.members), group.created_at)
        except _UNAVAILABLE_ERRORS as e:
            self.logger.error("Error creating group conversation", group_id=group.group_id, error=str(e))
            raise StoreUnavailableError("postgres", str(e))

        self.logger.info("Group conversation created", group_id=group.group_id, members=len(group.members))

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except (*_UNAVAILABLE_ERRORS, AttributeError):
            return False

    async def _apply_grant(self, conn, grant: TopicGrant) -> bool:
        # column name comes from the TopicDirection enum, never from input
        column = grant.direction.value
        result = await conn.execute(f"""
            UPDATE vmq_auth_acl
            SET {column} = {column} || $3::jsonb
            WHERE mountpoint = $1 AND client_id = $2
              AND NOT ({column} @> $3::jsonb)
        """, self.mountpoint, grant.client_id, _patterns_json([grant.pattern]))
        return result != "UPDATE 0"

    def _row_to_record(self, row) -> ACLRecord:
        """Convert database row to ACLRecord."""
        return ACLRecord(
            client_id=row['client_id'],
            username=row['username'],
            passhash=row['password'] or "",
            publish_acl=_patterns_from_json(row['publish_acl']),
            subscribe_acl=_patterns_from_json(row['subscribe_acl']),
            mountpoint=row['mountpoint'],
        )


def _patterns_json(patterns: Iterable[str]) -> str:
    return json.dumps([{"pattern": p} for p in patterns])


def _patterns_from_json(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = json.loads(value)
    return [entry["pattern"] for entry in value]
