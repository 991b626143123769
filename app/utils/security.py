"""
Actor resolution for incoming requests.

Authentication is handled upstream (gateway / auth service). By the time a
request reaches this API it carries the verified caller identity in two
headers:

    X-Actor-Id:    opaque user/authority id
    X-Actor-Role:  citizen | admin | authority

Roles are taken as given. No identity is ever promoted based on its name
or any other attribute.
"""

import logging
from typing import Optional

from fastapi import Header, HTTPException, status

from app.models.user import Actor, ActorRole

logger = logging.getLogger(__name__)


def get_current_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> Actor:
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Actor-Id header",
        )

    try:
        role = ActorRole((x_actor_role or ActorRole.CITIZEN.value).strip().lower())
    except ValueError:
        logger.warning(f"Rejected unknown actor role {x_actor_role!r} for {x_actor_id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Unknown actor role: {x_actor_role}",
        )

    return Actor(id=x_actor_id.strip(), role=role)


def require_admin(actor: Actor) -> Actor:
    if actor.role != ActorRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return actor
