# eventbook/domain/capabilities.py

from enum import Enum

from eventbook.domain.exceptions import PermissionDeniedError


class UserRole(str, Enum):
    USER = "user"
    HOST = "host"
    ADMIN = "admin"


class Capability(str, Enum):
    OWNER = "owner"
    HOST = "host"
    ADMIN = "admin"
    NONE = "none"


def resolve_capability(actor, resource) -> Capability:
    """
    Classify the actor's relation to a booking-like resource.

    ``resource`` needs ``user_id`` and ``host_id`` attributes. Admin wins over
    host, host wins over owner, so a host booking their own event is treated
    as the host.
    """
    if actor is None:
        return Capability.NONE
    if actor.role == UserRole.ADMIN:
        return Capability.ADMIN
    if actor.id == resource.host_id:
        return Capability.HOST
    if actor.id == resource.user_id:
        return Capability.OWNER
    return Capability.NONE


def require_capability(
    actor,
    resource,
    allowed: set[Capability],
    message: str = "Access denied",
) -> Capability:
    capability = resolve_capability(actor, resource)
    if capability not in allowed:
        raise PermissionDeniedError(message)
    return capability
