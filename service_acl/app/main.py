"""
ACL service: provisions broker ACLs for verified clients.
"""

from typing import Dict, Optional

from fastapi import Header
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import (
    ConflictError, CredentialUpdatedError, InvalidCredentialError, NotFoundError
)

from .auth.reconciler import AuthenticationReconciler
from .context import ServiceContext
from .groups.synchronizer import GroupACLSynchronizer
from .models import (
    ACLProvisionResponse, ACLRecord, ACLRecordResponse, CacheOutcome, ClientIdentity,
    GroupConversationRequest, GroupConversationResponse,
    MappingListResponse, MappingRequest, ReconcileResult,
)


class ACLService(BaseService):
    """ACL service implementation."""

    def __init__(self, context: Optional[ServiceContext] = None, config: Optional[ServiceConfig] = None):
        super().__init__("acl", 8020, config)

        self.context = context or ServiceContext.from_config(self.config, metrics=self.metrics)
        if self.context.metrics is None:
            self.context.metrics = self.metrics

        self.reconciler = AuthenticationReconciler(self.context)
        self.synchronizer = GroupACLSynchronizer(self.context)

        self._setup_acl_routes()

    def _setup_acl_routes(self):
        """Set up ACL-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "acl",
                "message": "Broker ACL - ACL Service",
                "version": "1.0.0",
                "capabilities": ["reconciliation", "acl_seeding", "group_fanout", "mappings"]
            }

        @self.app.post("/acl", response_model=ACLProvisionResponse)
        async def provision_acl(token: str = Header(default="")):
            """Seed the default ACL record for the caller on first sight."""
            result = await self._authenticate(token)
            identity = result.identity

            if result.outcome is CacheOutcome.UPDATED:
                raise CredentialUpdatedError(details={"client_id": identity.client_id})

            if result.outcome is CacheOutcome.CACHED:
                # the cache may outlive a seed that failed after reconciliation
                if await self.context.acl_store.get_acl(identity.client_id) is not None:
                    return ACLProvisionResponse(client_id=identity.client_id, outcome=result.outcome, created=False)
                self.logger.warning("Cached client has no ACL record", client_id=identity.client_id)

            if not await self._seed_acl(identity):
                return ACLProvisionResponse(client_id=identity.client_id, outcome=result.outcome, created=False)

            self.metrics.record_business_event("acl_provisioned")
            return JSONResponse(
                status_code=201,
                content=ACLProvisionResponse(
                    client_id=identity.client_id, outcome=result.outcome, created=True
                ).model_dump(mode="json")
            )

        @self.app.get("/acl/{client_id}", response_model=ACLRecordResponse)
        async def get_acl(client_id: str, token: str = Header(default="")):
            """Return the caller's own ACL record."""
            result = await self._authenticate(token)

            record = None
            if client_id == result.identity.client_id:
                record = await self.context.acl_store.get_acl(client_id)
            if record is None:
                raise NotFoundError("ACL record not found", details={"client_id": client_id})

            return ACLRecordResponse(
                client_id=record.client_id,
                username=record.username,
                publish_acl=record.publish_acl,
                subscribe_acl=record.subscribe_acl,
                mountpoint=record.mountpoint,
            )

        @self.app.post("/groups", response_model=GroupConversationResponse, status_code=201)
        async def create_group(request: GroupConversationRequest, token: str = Header(default="")):
            """Create a group conversation and grant its members access."""
            result = await self._authenticate(token)

            if result.outcome is CacheOutcome.UPDATED:
                raise CredentialUpdatedError(details={"client_id": result.identity.client_id})

            group = await self.synchronizer.create_group(
                result.identity.client_id,
                request.name,
                request.members
            )
            self.metrics.record_business_event("group_created")

            return GroupConversationResponse(
                group_id=group.group_id,
                name=group.name,
                members=group.members,
                created_at=group.created_at
            )

        @self.app.post("/mappings", response_model=MappingListResponse)
        async def get_mappings(request: MappingRequest, token: str = Header(default="")):
            """Resolve external user handles to internal client ids."""
            await self._authenticate(token)

            mappings = await self.synchronizer.resolve_mappings(request.user_ids)
            return MappingListResponse.from_mappings(request.user_ids, mappings)

    async def _seed_acl(self, identity: ClientIdentity) -> bool:
        """Create the default ACL record. False if one already exists."""
        record = ACLRecord.default_for(
            identity,
            self.context.private_topic_prefix,
            mountpoint=self.context.mountpoint
        )
        try:
            await self.context.acl_store.create_acl(record)
        except ConflictError:
            # a concurrent request provisioned this client first
            self.logger.info("ACL already provisioned", client_id=identity.client_id)
            return False
        return True

    async def _authenticate(self, token: str) -> ReconcileResult:
        if not self.context.token_checker.is_valid(token):
            self.logger.info("Invalid token format")
            raise InvalidCredentialError("Invalid token format")
        return await self.reconciler.reconcile(token)

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check ACL service dependencies."""
        return {
            "redis": "ok" if await self.context.identity_cache.health_check() else "error",
            "postgres": "ok" if await self.context.acl_store.health_check() else "error",
            "verification": "ok" if await self.context.verifier.health_check() else "error",
        }

    async def start(self):
        """Start ACL service components."""
        await self.context.identity_cache.start()
        await self.context.acl_store.start()
        self.logger.info("ACL service started")

    async def stop(self):
        """Stop ACL service components."""
        await self.context.identity_cache.stop()
        await self.context.acl_store.stop()
        self.logger.info("ACL service stopped")


def create_app(context: Optional[ServiceContext] = None):
    """Create ACL service application."""
    service = ACLService(context)
    return service.app


if __name__ == "__main__":
    service = ACLService()
    service.run()
