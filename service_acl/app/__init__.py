"""
ACL Service package for the Broker ACL layer.

This package issues and maintains broker ACL records for clients of a
publish/subscribe broker. It provides:

- app.main: API surface for ACL seeding, group creation and mappings.
- app.auth: Credential format check, verification client and the
  authentication cache reconciler.
- app.groups: Group membership resolution and ACL fan-out.
- app.cache: Redis-backed identity cache.
- app.persistence: PostgreSQL ACL store.

Guidelines:
- The service is stateless; rely on external cache/DB.
- Never call the verification endpoint for a credential already cached.
- Keep ACL grants idempotent so retried requests converge.
"""
