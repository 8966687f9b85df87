"""
Credential handling for the ACL service.

- token_format: configured pattern check run before any verification.
- verifier: HTTP client for the external identity verification endpoint.
- reconciler: three-outcome reconciliation of a credential against the
  identity cache (fresh, cached, updated).
"""
