"""
Authorization gate: route-level ability requirements.

    @router.get("")
    def list_users(ability: Annotated[RuleSet, Depends(check_abilities(Requirement(Action.READ, User)))]):
        ...

The gate runs before the target record is loaded, so it only checks
type-level permissions. Handlers that work on one record must re-check it
with ensure_can once the record is fetched.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Annotated, Any

from fastapi import Depends, HTTPException, status

from userhub.api.v1.auth import get_optional_user
from userhub.core.ability import Action, ForbiddenError, RuleSet, build_rule_set, detect_subject
from userhub.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Requirement:
    """
    One (action, subject) pair a route demands.

    unconditional: the grant must cover every record of the subject, not
    just some (e.g. the caller's own); used for collection endpoints.
    """

    action: Action
    subject: Any
    unconditional: bool = False

    def is_met_by(self, ability: RuleSet) -> bool:
        if self.unconditional:
            return ability.can_unconditionally(self.action, self.subject)
        return ability.can(self.action, self.subject)


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def check_abilities(*requirements: Requirement) -> Callable[..., RuleSet | None]:
    """
    Dependency factory. With no requirements the route is open and the
    dependency yields the caller's rule set, or None when anonymous. Otherwise
    an anonymous caller gets 401 and a caller failing any requirement gets 403.
    """

    def gate(user: Annotated[User | None, Depends(get_optional_user)]) -> RuleSet | None:
        if not requirements:
            return build_rule_set(user) if user is not None else None
        if user is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Not authenticated",
                headers={"WWW-Authenticate": "Bearer"},
            )
        ability = build_rule_set(user)
        for requirement in requirements:
            if not requirement.is_met_by(ability):
                subject_type, _ = detect_subject(requirement.subject)
                logger.warning(
                    "Access denied: user_id=%s role=%s action=%s subject=%s",
                    user.id,
                    user.role,
                    requirement.action.value,
                    subject_type,
                )
                raise _forbidden(f"Cannot {requirement.action.value} {subject_type}")
        return ability

    return gate


def ensure_can(ability: RuleSet, action: Action, subject: Any, field: str | None = None) -> None:
    """Instance- or field-level re-check inside a handler; raises 403 when not permitted."""
    try:
        ability.ensure(action, subject, field)
    except ForbiddenError as e:
        logger.warning(
            "Access denied: action=%s subject=%s field=%s",
            action.value,
            e.subject_type,
            field,
        )
        raise _forbidden(str(e))
