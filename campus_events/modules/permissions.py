"""
Permissions Module - Campus Events

Closed permission check consumed by every mutating operation. Role
checks are resolved here and nowhere else.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from campus_events.modules.exceptions import PermissionDenied
from campus_events.modules.models import Event, User, ROLE_ORGANIZER, ROLE_STUDENT

POLICY_OWNER = 'owner'
POLICY_ANY_ORGANIZER = 'any_organizer'
EDIT_POLICIES = (POLICY_OWNER, POLICY_ANY_ORGANIZER)


class Action(Enum):
    CREATE_EVENT = 'create_event'
    EDIT_EVENT = 'edit_event'
    DELETE_EVENT = 'delete_event'
    REGISTER = 'register'
    MARK_ATTENDANCE = 'mark_attendance'
    EXPORT_ATTENDEES = 'export_attendees'
    VIEW_ARCHIVE = 'view_archive'
    MANAGE_ARCHIVE = 'manage_archive'


PERMISSIONS = {
    ROLE_ORGANIZER: {
        Action.CREATE_EVENT, Action.EDIT_EVENT, Action.DELETE_EVENT,
        Action.REGISTER, Action.MARK_ATTENDANCE, Action.EXPORT_ATTENDEES,
        Action.VIEW_ARCHIVE, Action.MANAGE_ARCHIVE
    },
    ROLE_STUDENT: {
        Action.REGISTER
    }
}

# Actions that, under the owner policy, only the creating organizer may take
OWNER_SCOPED_ACTIONS = {Action.EDIT_EVENT, Action.DELETE_EVENT}


@dataclass(frozen=True)
class AuthorizationResult:
    allowed: bool
    reason: str = ''

    def __bool__(self):
        return self.allowed


def authorize(user: Optional[User], action: Action, event: Optional[Event] = None,
              policy: str = POLICY_OWNER) -> AuthorizationResult:
    """
    Decide whether a user may perform an action.

    Args:
        user (User): Acting user, None when signed out
        action (Action): Requested action
        event (Event): Target event for event-scoped actions
        policy (str): Event edit policy, ``owner`` or ``any_organizer``

    Returns:
        AuthorizationResult: Decision with a user-facing reason when denied
    """
    if user is None:
        return AuthorizationResult(False, 'Please sign in to continue')

    if action not in PERMISSIONS.get(user.role, set()):
        return AuthorizationResult(False, f"Only organizers can {action.value.replace('_', ' ')}")

    if (action in OWNER_SCOPED_ACTIONS and policy == POLICY_OWNER
            and event is not None and event.organizer_id != user.id):
        return AuthorizationResult(
            False,
            f"You can only modify events that you created. This event was created by {event.organizer}."
        )

    return AuthorizationResult(True)


def require_permission(user: Optional[User], action: Action, event: Optional[Event] = None,
                       policy: str = POLICY_OWNER) -> None:
    """Raise PermissionDenied unless ``authorize`` allows the action."""
    result = authorize(user, action, event, policy)
    if not result:
        raise PermissionDenied(result.reason)
