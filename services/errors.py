class ServiceError(Exception):
    """Base class for errors raised synchronously to the caller of a service."""
    pass


class NotFoundError(ServiceError):
    pass


class InvalidOperationError(ServiceError):
    pass
