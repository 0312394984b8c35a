from services.errors import InvalidOperationError, NotFoundError, ServiceError
from services.groups import GroupService
from services.pings import PingService
from services.reactions import ReactionService

__all__ = [
    "ServiceError", "NotFoundError", "InvalidOperationError",
    "GroupService", "ReactionService", "PingService",
]
