import enum
import logging
from dataclasses import dataclass
from typing import FrozenSet, Optional
from uuid import UUID

import jwt
from fastapi import Depends, Header

from app.config import settings
from app.errors import AuthorizationError, ForbiddenError, TokenMissing

logger = logging.getLogger(__name__)


class Role(str, enum.Enum):
    SERVICE_CENTER_STAFF = "service_center_staff"
    SERVICE_CENTER_TECHNICIAN = "service_center_technician"
    SERVICE_CENTER_MANAGER = "service_center_manager"
    PARTS_COORDINATOR_SERVICE_CENTER = "parts_coordinator_service_center"
    PARTS_COORDINATOR_COMPANY = "parts_coordinator_company"
    EMV_STAFF = "emv_staff"
    EMV_ADMIN = "emv_admin"


class Capability(enum.Flag):
    NONE = 0
    VIEW_RESERVATIONS = enum.auto()
    ALLOCATE_STOCK = enum.auto()
    PICKUP_COMPONENT = enum.auto()
    INSTALL_COMPONENT = enum.auto()
    RETURN_COMPONENT = enum.auto()
    CANCEL_RESERVATION = enum.auto()
    AUDIT_STOCK = enum.auto()


ROLE_CAPABILITIES = {
    Role.SERVICE_CENTER_STAFF: (
        Capability.VIEW_RESERVATIONS | Capability.ALLOCATE_STOCK | Capability.CANCEL_RESERVATION
    ),
    Role.SERVICE_CENTER_TECHNICIAN: (
        Capability.VIEW_RESERVATIONS | Capability.ALLOCATE_STOCK | Capability.PICKUP_COMPONENT
        | Capability.INSTALL_COMPONENT | Capability.RETURN_COMPONENT
    ),
    Role.SERVICE_CENTER_MANAGER: (
        Capability.VIEW_RESERVATIONS | Capability.CANCEL_RESERVATION | Capability.AUDIT_STOCK
    ),
    Role.PARTS_COORDINATOR_SERVICE_CENTER: (
        Capability.VIEW_RESERVATIONS | Capability.PICKUP_COMPONENT | Capability.RETURN_COMPONENT
        | Capability.CANCEL_RESERVATION | Capability.AUDIT_STOCK
    ),
    Role.PARTS_COORDINATOR_COMPANY: Capability.VIEW_RESERVATIONS | Capability.AUDIT_STOCK,
    Role.EMV_STAFF: Capability.VIEW_RESERVATIONS,
    Role.EMV_ADMIN: Capability.VIEW_RESERVATIONS | Capability.AUDIT_STOCK,
}

# Roles whose capabilities only make sense inside one service center
SERVICE_CENTER_ROLES: FrozenSet[Role] = frozenset({
    Role.SERVICE_CENTER_STAFF,
    Role.SERVICE_CENTER_TECHNICIAN,
    Role.SERVICE_CENTER_MANAGER,
    Role.PARTS_COORDINATOR_SERVICE_CENTER,
})

# Roles that see every warehouse of their vehicle company
COMPANY_ROLES: FrozenSet[Role] = frozenset({Role.PARTS_COORDINATOR_COMPANY})


@dataclass(frozen=True)
class CurrentUser:
    user_id: UUID
    role: Role
    service_center_id: Optional[UUID] = None
    company_id: Optional[UUID] = None

    @property
    def capabilities(self) -> Capability:
        return ROLE_CAPABILITIES.get(self.role, Capability.NONE)

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @property
    def company_scope(self) -> Optional[UUID]:
        return self.company_id if self.role in COMPANY_ROLES else None


def _optional_uuid(value) -> Optional[UUID]:
    return UUID(str(value)) if value else None


def decode_token(token: str) -> CurrentUser:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError as e:
        raise AuthorizationError(f"Invalid token: {e}")

    try:
        return CurrentUser(
            user_id=UUID(str(payload["userId"])),
            role=Role(payload["roleName"]),
            service_center_id=_optional_uuid(payload.get("serviceCenterId")),
            company_id=_optional_uuid(payload.get("companyId")),
        )
    except (KeyError, ValueError) as e:
        raise AuthorizationError(f"Invalid token payload: {e}")


def encode_token(user: CurrentUser) -> str:
    """Issue a token for `user`. Used by the seeder and tests; real tokens come from the auth service."""
    payload = {
        "userId": str(user.user_id),
        "roleName": user.role.value,
        "serviceCenterId": str(user.service_center_id) if user.service_center_id else None,
        "companyId": str(user.company_id) if user.company_id else None,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


async def get_current_user(authorization: Optional[str] = Header(None)) -> CurrentUser:
    if not authorization:
        raise AuthorizationError()

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise TokenMissing()

    return decode_token(token.strip())


def require_capability(capability: Capability):
    async def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not user.has(capability):
            logger.warning(f"User {user.user_id} ({user.role.value}) lacks {capability.name}")
            raise ForbiddenError()
        if user.role in SERVICE_CENTER_ROLES and user.service_center_id is None:
            raise ForbiddenError("Service center context is required for this role")
        if user.role in COMPANY_ROLES and user.company_id is None:
            raise ForbiddenError("Company context is required for this role")
        return user

    return dependency
