from expiration.handlers import ExpirationHandlers
from expiration.producers import (
    GroupExpiryProducer, PingExpiryProducer, ReactionExpiryProducer,
    compute_delay_ms,
)

__all__ = [
    "ExpirationHandlers",
    "GroupExpiryProducer", "ReactionExpiryProducer", "PingExpiryProducer",
    "compute_delay_ms",
]
