"""
Declarative transition tables.

A transition names its destination, the statuses it may start from, the
roles allowed to cause it, and what it does to the record. Legality of
every move is declared once and shared by the engines and their tests.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from .errors import PermissionDenied, PreconditionFailed, ValidationError
from .models import Role


def _no_effect(record, extra: Dict[str, Any]) -> Dict[str, Any]:
    return {}


def require_text(values: Dict[str, Any], names: Iterable[str]) -> None:
    """Reject a free-text field that arrived as a number, list or object."""
    for name in names:
        value = values.get(name)
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"{name} must be a string")


@dataclass(frozen=True)
class Transition:
    destination: Any
    sources: FrozenSet
    roles: FrozenSet[Role]
    action: str
    # Field holding the sticky binding this transition sets when it is empty
    binds: Optional[str] = None
    # Binding filled by automatic assignment when still empty after the move
    auto_assign: Optional[str] = None
    required: Tuple[str, ...] = ()
    # Contributors may only act on their own items
    owner_only: bool = False
    guard: Optional[Callable[[Any], bool]] = None
    guard_message: str = ''
    effect: Callable[[Any, Dict[str, Any]], Dict[str, Any]] = field(default=_no_effect)

    def missing_fields(self, extra: Dict[str, Any]) -> List[str]:
        return [name for name in self.required if not str(extra.get(name) or '').strip()]


class TransitionTable:
    """Lookup and validation over a list of transitions."""

    def __init__(self, transitions: Iterable[Transition]):
        self.transitions = list(transitions)

    def destinations(self) -> set:
        return {t.destination for t in self.transitions}

    def sources_for(self, destination) -> set:
        sources = set()
        for t in self.transitions:
            if t.destination == destination:
                sources |= t.sources
        return sources

    def roles_for(self, destination) -> set:
        roles = set()
        for t in self.transitions:
            if t.destination == destination:
                roles |= t.roles
        return roles

    def allowed_from(self, status, role: Role) -> list:
        """Destinations `role` may move a record to from `status`."""
        return [
            t.destination for t in self.transitions
            if status in t.sources and role in t.roles
        ]

    def resolve(self, record, destination, role: Role, actor_id: str = None) -> Transition:
        """
        Find the transition that moves `record` to `destination` for `role`.

        Raises:
            PermissionDenied: role may never cause this move, or a contributor
                acts on someone else's item
            PreconditionFailed: the record is not in an allowed source status,
                or a guard rejects it
        """
        current = record.status
        current_value = getattr(current, 'value', current)
        candidates = [t for t in self.transitions if t.destination == destination]
        if not candidates:
            raise PreconditionFailed(
                f"No transition leads to {getattr(destination, 'value', destination)}",
                current_status=current_value,
            )

        by_role = [t for t in candidates if role in t.roles]
        if not by_role:
            raise PermissionDenied(
                f"Role {getattr(role, 'value', role)} cannot move a task to "
                f"{getattr(destination, 'value', destination)}",
                role=getattr(role, 'value', role),
                current_status=current_value,
                expected_roles=[r.value for r in self.roles_for(destination)],
            )

        for t in by_role:
            if current not in t.sources:
                continue
            if t.guard is not None and not t.guard(record):
                raise PreconditionFailed(t.guard_message or 'Transition guard failed',
                                         current_status=current_value)
            if t.owner_only and role == Role.CONTRIBUTOR and record.contributor_id != actor_id:
                raise PermissionDenied(
                    "You can only update your own submissions",
                    role=role.value,
                    current_status=current_value,
                )
            return t

        allowed = set()
        for t in by_role:
            allowed |= t.sources
        raise PreconditionFailed(
            f"Task cannot move to {getattr(destination, 'value', destination)}",
            current_status=current_value,
            allowed_statuses=[getattr(s, 'value', s) for s in allowed],
        )

    @staticmethod
    def validate_extra(transition: Transition, extra: Dict[str, Any]) -> None:
        require_text(extra, transition.required)
        missing = transition.missing_fields(extra)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
