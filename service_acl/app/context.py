"""
Dependency container handed to the ACL service components.
"""

from dataclasses import dataclass
from typing import Optional

from shared.config import ServiceConfig
from shared.metrics import MetricsCollector
from .auth.token_format import TokenFormatChecker
from .auth.verifier import VerificationClient
from .cache.identity_cache import RedisIdentityCache
from .persistence.postgres import PostgreSQLACLStore


@dataclass
class ServiceContext:
    """Long-lived clients shared by every request.

    The clients are safe for concurrent use; components never lock them.
    """
    identity_cache: RedisIdentityCache
    acl_store: PostgreSQLACLStore
    verifier: VerificationClient
    token_checker: TokenFormatChecker
    group_topic_prefix: str = "groups"
    private_topic_prefix: str = "private"
    mountpoint: str = ""
    metrics: Optional[MetricsCollector] = None

    @classmethod
    def from_config(cls, config: ServiceConfig, metrics: Optional[MetricsCollector] = None) -> "ServiceContext":
        return cls(
            identity_cache=RedisIdentityCache(config.redis_url, token_ttl=config.token_cache_ttl_seconds),
            acl_store=PostgreSQLACLStore(config.postgres_dsn, mountpoint=config.vmq_mountpoint),
            verifier=VerificationClient(
                config.verification_url,
                timeout=config.verification_timeout,
                metrics=metrics
            ),
            token_checker=TokenFormatChecker(config.token_format_pattern),
            group_topic_prefix=config.group_topic_prefix.rstrip("/"),
            private_topic_prefix=config.private_topic_prefix.rstrip("/"),
            mountpoint=config.vmq_mountpoint,
            metrics=metrics,
        )
