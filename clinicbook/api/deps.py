from fastapi import BackgroundTasks, Depends
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import List

from ..core.config import settings
from ..core.database import get_db, get_redis
from ..core.security import (
    ACCESS_TOKEN_TYPE, Actor, AuthenticationError, AuthorizationError, UserRole,
    actor_from_token, decode_token, security
)
from ..services.appointment_service import AppointmentService
from ..services.availability_cache import AvailabilityCache
from ..services.notification_service import BackgroundNotificationDispatcher, build_dispatcher

async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Actor:
    """Resolve the caller from the bearer token; no user lookup is needed."""
    payload = decode_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Invalid or expired token")
    if payload.token_type != ACCESS_TOKEN_TYPE:
        raise AuthenticationError("Invalid token type")

    actor = actor_from_token(payload)
    if actor is None:
        raise AuthenticationError("Token does not identify a patient, doctor or admin")
    return actor

def require_role(allowed_roles: List[UserRole]):
    """Dependency factory rejecting actors outside ``allowed_roles``."""
    async def role_checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed_roles:
            raise AuthorizationError(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return actor

    return role_checker

get_admin_actor = require_role([UserRole.ADMIN])

def get_appointment_service(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    redis_client = Depends(get_redis)
) -> AppointmentService:
    """Per-request scheduling service.

    Notifications are queued as background tasks and sent after the response.
    """
    return AppointmentService(
        db,
        cache=AvailabilityCache(redis_client, ttl_seconds=settings.SLOT_CACHE_TTL_SECONDS),
        dispatcher=BackgroundNotificationDispatcher(background_tasks, build_dispatcher()),
    )
