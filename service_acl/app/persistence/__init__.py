"""
Persistence package for the ACL service.

Holds the PostgreSQL store for per-client broker ACL records and group
conversations. The store is the only writer of ACL record state.
"""
