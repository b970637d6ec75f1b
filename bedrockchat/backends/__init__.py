"""
Transport collaborators for Bedrock.
The orchestrator depends only on BaseTransport; the gateway adapter and the
retry wrapper are the concrete pieces wired up from config.
"""
from bedrockchat.backends.base import BaseTransport
from bedrockchat.backends.gateway import GatewayTransport
from bedrockchat.backends.retry_wrapper import RetryableTransportWrapper

__all__ = [
    "BaseTransport",
    "GatewayTransport",
    "RetryableTransportWrapper",
]
