"""
Cache package for the ACL service.

Provides the Redis-backed identity cache that remembers which client
identity a credential and an external user handle resolve to, so that
repeated requests do not hit the verification endpoint.
"""
