"""
Ability engine: per-user permission rules and their evaluation.

A rule set is an ordered list of Rule records built from the caller's role.
Each rule grants (or, when inverted, denies) an action on a subject type,
optionally restricted to records matching some conditions and/or to specific
fields. Evaluation is a pure filter over that list:

    ability = build_rule_set(current_user)
    ability.can(Action.READ, User)              # type-level, before a fetch
    ability.can(Action.READ, target_user)       # instance-level
    ability.can(Action.UPDATE, target_user, "role")

Deny rules always win over allow rules for the same action/subject/field,
whatever their order. Nothing is cached: build a fresh rule set per request.
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy import ColumnElement, and_, false, not_, or_, true

from userhub.models.user import User, UserRole

logger = logging.getLogger(__name__)

ALL = "all"
USER_SUBJECT = User.__name__

# Subject types the engine can authorize; anything else is denied outright.
KNOWN_SUBJECTS = frozenset({ALL, USER_SUBJECT})


class Action(str, Enum):
    """Actions a rule can grant. MANAGE subsumes every other action."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    LIST = "list"
    MANAGE = "manage"


class ForbiddenError(Exception):
    """Raised by RuleSet.ensure when the rule set does not permit an action."""

    def __init__(
        self,
        action: Action | str,
        subject_type: str,
        field: str | None = None,
        reason: str | None = None,
    ) -> None:
        self.action = action
        self.subject_type = subject_type
        self.field = field
        self.reason = reason
        action_name = getattr(action, "value", action)
        if reason:
            message = reason
        elif field:
            message = f"Cannot {action_name} field '{field}' of {subject_type}"
        else:
            message = f"Cannot {action_name} {subject_type}"
        super().__init__(message)


@dataclass(frozen=True)
class SubjectInstance:
    """A plain mapping tagged with a subject type, for instance-level checks."""

    subject_type: str
    attrs: Mapping[str, Any]


def as_subject(subject_type: str, attrs: Mapping[str, Any] | None = None, **kwargs: Any) -> SubjectInstance:
    """Tag a mapping (or keyword attributes) as an instance of subject_type."""
    values = dict(attrs or {})
    values.update(kwargs)
    return SubjectInstance(subject_type=subject_type, attrs=values)


# Condition operators, evaluated against Python values...
_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "$eq": lambda actual, expected: actual == expected,
    "$ne": lambda actual, expected: actual != expected,
    "$in": lambda actual, expected: actual in expected,
    "$nin": lambda actual, expected: actual not in expected,
}

# ...and translated to SQL for accessible-record queries.
_SQL_OPERATORS: dict[str, Callable[[Any, Any], ColumnElement[bool]]] = {
    "$eq": lambda column, expected: column == expected,
    "$ne": lambda column, expected: column != expected,
    "$in": lambda column, expected: column.in_(list(expected)),
    "$nin": lambda column, expected: column.not_in(list(expected)),
}


def _normalize_condition(expected: Any) -> dict[str, Any]:
    """Return {operator: value}; a bare value means equality."""
    if isinstance(expected, Mapping):
        unknown = [op for op in expected if op not in _OPERATORS]
        if unknown:
            raise ValueError(f"Unsupported condition operator(s): {', '.join(unknown)}")
        return dict(expected)
    return {"$eq": expected}


def _plain(value: Any) -> Any:
    """Unwrap enum members so conditions compare against stored column values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_plain(v) for v in value]
    return value


def _read_attr(instance: Any, name: str) -> Any:
    if isinstance(instance, SubjectInstance):
        return instance.attrs.get(name)
    return getattr(instance, name, None)


@dataclass(frozen=True)
class Rule:
    """
    One tagged permission rule.

    conditions: {field: value} or {field: {"$ne": value}} (operators $eq, $ne,
        $in, $nin); all entries must match. None means any record.
    fields: when set, the rule only covers these fields.
    inverted: True for a deny ("cannot") rule.
    reason: optional message reported when this deny rule blocks a request.
    """

    action: Action
    subject: str
    conditions: Mapping[str, Any] | None = None
    fields: tuple[str, ...] | None = None
    inverted: bool = False
    reason: str | None = None

    def __post_init__(self) -> None:
        if self.conditions:
            normalized = {
                name: {op: _plain(v) for op, v in _normalize_condition(expected).items()}
                for name, expected in self.conditions.items()
            }
            object.__setattr__(self, "conditions", normalized)
        if self.fields is not None:
            object.__setattr__(self, "fields", tuple(self.fields))

    def matches_action(self, action: Action) -> bool:
        return self.action is Action.MANAGE or self.action is action

    def matches_subject_type(self, subject_type: str) -> bool:
        return self.subject == ALL or self.subject == subject_type

    def matches_conditions(self, instance: Any | None) -> bool:
        """
        Instance given: every condition must hold. Type-level query (instance
        None): conditional allow rules count (the type is permitted for some
        records) but conditional deny rules do not deny the whole type.
        """
        if not self.conditions:
            return True
        if instance is None:
            return not self.inverted
        for name, ops in self.conditions.items():
            actual = _plain(_read_attr(instance, name))
            if not all(_OPERATORS[op](actual, expected) for op, expected in ops.items()):
                return False
        return True

    def matches_field(self, field: str | None) -> bool:
        """
        Without a field, field-restricted deny rules do not apply: they forbid
        only those fields, not the action as a whole.
        """
        if not self.fields:
            return True
        if field is None:
            return not self.inverted
        return field in self.fields

    def to_clause(self, model: type) -> ColumnElement[bool]:
        """SQL predicate equivalent to this rule's conditions for model's table."""
        if not self.conditions:
            return true()
        clauses = []
        for name, ops in self.conditions.items():
            column = getattr(model, name, None)
            if column is None:
                raise ValueError(f"{model.__name__} has no column '{name}' for rule conditions")
            clauses.extend(_SQL_OPERATORS[op](column, expected) for op, expected in ops.items())
        return and_(*clauses)


def _coerce_action(action: Action | str) -> Action | None:
    if isinstance(action, Action):
        return action
    try:
        return Action(action)
    except ValueError:
        return None


def detect_subject(subject: Any) -> tuple[str, Any | None]:
    """Return (subject type name, instance or None for type-level queries)."""
    if isinstance(subject, str):
        return subject, None
    if isinstance(subject, type):
        return subject.__name__, None
    if isinstance(subject, SubjectInstance):
        return subject.subject_type, subject
    return type(subject).__name__, subject


class RuleSet:
    """Immutable, ordered collection of rules for one user."""

    def __init__(self, rules: Iterable[Rule]) -> None:
        self._rules: tuple[Rule, ...] = tuple(rules)

    @property
    def rules(self) -> tuple[Rule, ...]:
        return self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def rules_for(
        self,
        action: Action | str,
        subject: Any,
        field: str | None = None,
    ) -> list[Rule]:
        """Rules (allow and deny) that apply to the query, in declaration order."""
        resolved = _coerce_action(action)
        subject_type, instance = detect_subject(subject)
        if resolved is None or subject_type not in KNOWN_SUBJECTS:
            return []
        return [
            rule
            for rule in self._rules
            if rule.matches_action(resolved)
            and rule.matches_subject_type(subject_type)
            and rule.matches_conditions(instance)
            and rule.matches_field(field)
        ]

    def can(self, action: Action | str, subject: Any, field: str | None = None) -> bool:
        """True iff some allow rule applies and no deny rule does (default deny)."""
        rules = self.rules_for(action, subject, field)
        if any(rule.inverted for rule in rules):
            return False
        return bool(rules)

    def cannot(self, action: Action | str, subject: Any, field: str | None = None) -> bool:
        return not self.can(action, subject, field)

    def can_unconditionally(self, action: Action | str, subject: Any) -> bool:
        """
        True iff the action is granted on every record of the subject type: an
        allow rule without conditions applies and no whole-record deny does.
        """
        resolved = _coerce_action(action)
        subject_type, _ = detect_subject(subject)
        if resolved is None or subject_type not in KNOWN_SUBJECTS:
            return False
        rules = [
            rule
            for rule in self._rules
            if rule.matches_action(resolved)
            and rule.matches_subject_type(subject_type)
            and rule.matches_field(None)
        ]
        if any(rule.inverted for rule in rules):
            return False
        return any(not rule.conditions for rule in rules)

    def ensure(self, action: Action | str, subject: Any, field: str | None = None) -> None:
        """Raise ForbiddenError unless can(action, subject, field)."""
        if self.can(action, subject, field):
            return
        resolved = _coerce_action(action) or action
        subject_type, _ = detect_subject(subject)
        reason = next(
            (rule.reason for rule in self.rules_for(action, subject, field) if rule.inverted and rule.reason),
            None,
        )
        raise ForbiddenError(resolved, subject_type, field=field, reason=reason)

    def query_filter(self, action: Action | str, model: type) -> ColumnElement[bool]:
        """
        WHERE clause selecting exactly the rows of model this rule set permits
        for action: (any allow condition) AND NOT (any deny condition).
        Field-restricted rules are ignored; they never hide whole records.
        """
        resolved = _coerce_action(action)
        subject_type = model.__name__
        if resolved is None or subject_type not in KNOWN_SUBJECTS:
            return false()
        allow: list[ColumnElement[bool]] = []
        deny: list[ColumnElement[bool]] = []
        for rule in self._rules:
            if not (rule.matches_action(resolved) and rule.matches_subject_type(subject_type)):
                continue
            if rule.fields:
                continue
            (deny if rule.inverted else allow).append(rule.to_clause(model))
        if not allow:
            return false()
        return and_(or_(*allow), *[not_(clause) for clause in deny])


def _admin_rules(user: Any) -> list[Rule]:
    return [Rule(Action.MANAGE, ALL)]


def _manager_rules(user: Any) -> list[Rule]:
    return [
        Rule(Action.READ, ALL),
        Rule(Action.LIST, USER_SUBJECT, {"role": UserRole.USER}),
        Rule(Action.UPDATE, USER_SUBJECT, {"role": {"$ne": UserRole.ADMIN}}),
        Rule(
            Action.UPDATE,
            USER_SUBJECT,
            fields=("role",),
            inverted=True,
            reason="Managers cannot change user roles",
        ),
    ]


def _user_rules(user: Any) -> list[Rule]:
    return [
        Rule(Action.READ, USER_SUBJECT, {"id": user.id}),
        Rule(Action.LIST, USER_SUBJECT, {"id": user.id}),
        Rule(Action.UPDATE, USER_SUBJECT, {"id": user.id}),
        Rule(
            Action.UPDATE,
            USER_SUBJECT,
            fields=("role",),
            inverted=True,
            reason="Users cannot change their own role",
        ),
    ]


ROLE_RULES: dict[str, Callable[[Any], list[Rule]]] = {
    UserRole.ADMIN.value: _admin_rules,
    UserRole.MANAGER.value: _manager_rules,
    UserRole.USER.value: _user_rules,
}


def build_rule_set(user: Any) -> RuleSet:
    """
    Build the rule set for user (anything with id and role).
    An unknown or missing role yields an empty rule set, i.e. deny everything.
    """
    role = _plain(getattr(user, "role", None))
    factory = ROLE_RULES.get(role)
    if factory is None:
        logger.warning("No ability rules for role=%r (user id=%s); denying all", role, getattr(user, "id", None))
        return RuleSet([])
    return RuleSet(factory(user))
