"""AI completion gateway access."""

from qualiq.gateway.client import (
    AIGatewayClient,
    GatewayConfigurationError,
    GatewayResponseError,
    normalize_turns,
)

__all__ = [
    "AIGatewayClient",
    "GatewayConfigurationError",
    "GatewayResponseError",
    "normalize_turns",
]
