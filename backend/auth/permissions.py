"""
Resource ownership and role transition rules.

Every Project and Task is stamped with its creator's id. This module is the
single place that decides whether a caller may act on such a resource, and
the single place that defines how a user's role may change.

Two lookup styles are in use:
- Direct access (`check_resource_access`): a missing resource is NOT_FOUND,
  someone else's resource is FORBIDDEN.
- Scoped access (`owned_query`): the query itself is filtered by owner, so
  someone else's resource simply does not exist for the caller. Attachments
  reach their task this way, which is why foreign attachments are 404.
"""

import enum
import logging
from typing import Optional, Type, TypeVar

from fastapi import HTTPException, status
from sqlalchemy.orm import Query, Session

from models import User, UserRole

logger = logging.getLogger(__name__)

OwnedModel = TypeVar("OwnedModel")


class Action(str, enum.Enum):
    view = "view"
    update = "update"
    delete = "delete"


class AccessDecision(str, enum.Enum):
    allowed = "allowed"
    forbidden = "forbidden"
    not_found = "not_found"


class RoleAction(str, enum.Enum):
    promote = "promote"
    downgrade = "downgrade"


# action -> (required current role, resulting role)
ROLE_TRANSITIONS = {
    RoleAction.promote: (UserRole.member, UserRole.owner),
    RoleAction.downgrade: (UserRole.owner, UserRole.member),
}


def check_resource_access(user: User, resource: Optional[object], action: Action) -> AccessDecision:
    """
    Decide whether a user may perform an action on an owned resource.

    All actions currently share the same rule: only the creator may act.

    Args:
        user: Authenticated caller
        resource: Project or Task instance, or None if the lookup found nothing
        action: What the caller is trying to do

    Returns:
        AccessDecision.not_found if there is no resource,
        AccessDecision.forbidden if the caller does not own it,
        AccessDecision.allowed otherwise
    """
    if resource is None:
        return AccessDecision.not_found

    if resource.user_id != user.id:
        logger.info(
            f"User {user.id} denied '{action.value}' on {type(resource).__name__} "
            f"{resource.id} owned by user {resource.user_id}"
        )
        return AccessDecision.forbidden

    return AccessDecision.allowed


def require_resource_access(
    user: User, resource: Optional[OwnedModel], action: Action, label: str
) -> OwnedModel:
    """
    Require access to a resource, or raise an exception.

    Args:
        user: Authenticated caller
        resource: Loaded resource or None
        action: Action being attempted
        label: Human-readable resource name used in error messages ("project", "task")

    Returns:
        The resource, once access is granted

    Raises:
        HTTPException: 404 if the resource does not exist
        HTTPException: 403 if the caller does not own it

    Example:
        >>> project = db.query(Project).filter(Project.id == project_id).first()
        >>> project = require_resource_access(user, project, Action.update, "project")
    """
    decision = check_resource_access(user, resource, action)

    if decision is AccessDecision.not_found:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"{label.capitalize()} not found"
        )
    if decision is AccessDecision.forbidden:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"You are not authorized to {action.value} this {label}.",
        )

    return resource


def owned_query(db: Session, model: Type[OwnedModel], user: User) -> Query:
    """
    Build a query over `model` restricted to rows the user owns.

    Example:
        >>> task = owned_query(db, Task, user).filter(Task.id == task_id).first()
    """
    return db.query(model).filter(model.user_id == user.id)


def apply_role_transition(target: User, action: RoleAction) -> bool:
    """
    Apply a role transition to a user if its precondition holds.

    A transition whose precondition does not hold (promoting an owner,
    downgrading a member) is a no-op, not an error. There is no guard
    against downgrading the last remaining owner.

    Returns:
        True if the role changed, False for a no-op
    """
    required_role, new_role = ROLE_TRANSITIONS[action]

    if target.role != required_role:
        logger.debug(
            f"Role transition '{action.value}' is a no-op for user {target.id} "
            f"(current role: {target.role.value})"
        )
        return False

    target.role = new_role
    logger.info(f"User {target.id} role changed: {required_role.value} -> {new_role.value}")
    return True
