"""
Authentication cache reconciliation.
"""

from shared.logging import get_logger, set_client_context
from ..context import ServiceContext
from ..models import CacheOutcome, ClientIdentity, ReconcileResult


class AuthenticationReconciler:
    """Keeps the identity cache in agreement with the verification endpoint.

    A credential seen before resolves from the cache without any external
    call, so a hash rotated behind a still-cached credential is only noticed
    once that token entry expires. An unseen credential is verified, then
    compared with the last identity cached for the same user handle:

    - no previous identity: ``FRESH``, the caller should seed an ACL record;
    - same fields: ``CACHED``;
    - changed fields: the cache is overwritten and ``UPDATED`` is returned.
      The caller must not act on this request and should let it be retried.

    Verification failures propagate as InvalidCredentialError and leave the
    cache untouched.
    """

    def __init__(self, context: ServiceContext):
        self.cache = context.identity_cache
        self.acl_store = context.acl_store
        self.verifier = context.verifier
        self.metrics = context.metrics
        self.logger = get_logger("acl.auth.reconciler")

    async def reconcile(self, credential: str) -> ReconcileResult:
        cached = await self.cache.get_token_identity(credential)
        if cached is not None:
            set_client_context(cached.client_id)
            return self._result(cached, CacheOutcome.CACHED)

        identity = await self.verifier.verify(credential)
        set_client_context(identity.client_id)

        known = await self.cache.get_user_identity(identity.username)
        if known is None:
            await self.cache.set_user_identity(identity)
            await self.cache.set_token_identity(credential, identity)
            return self._result(identity, CacheOutcome.FRESH)

        if known == identity:
            await self.cache.set_token_identity(credential, identity)
            return self._result(identity, CacheOutcome.CACHED)

        await self._absorb_change(known, identity)
        await self.cache.set_token_identity(credential, identity)
        return self._result(identity, CacheOutcome.UPDATED)

    async def _absorb_change(self, known: ClientIdentity, identity: ClientIdentity):
        await self.cache.set_user_identity(identity)

        if known.client_id != identity.client_id:
            self.logger.warning(
                "User handle now maps to a different client id",
                username=identity.username,
                previous_client_id=known.client_id,
            )
            return

        if known.passhash != identity.passhash:
            await self.acl_store.update_password_hash(identity.client_id, identity.passhash)
            self.logger.info("Password hash rotated", username=identity.username)

    def _result(self, identity: ClientIdentity, outcome: CacheOutcome) -> ReconcileResult:
        if self.metrics is not None:
            self.metrics.increment_counter("reconcile_outcomes_total", outcome=outcome.value)
        self.logger.debug("Credential reconciled", client_id=identity.client_id, outcome=outcome.value)
        return ReconcileResult(identity=identity, outcome=outcome)
