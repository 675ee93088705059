"""
Identity Manager Module - Campus Events

This module resolves authentication principals into application users and
provides the password-based auth provider the API signs users in with.

Features:
- Principal to user resolution with profile merge
- Sign-up (account + profile creation), sign-in, sign-out
- Auth state change listeners
- Profile editing with immutable roles
- Optional demo accounts
"""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from werkzeug.security import generate_password_hash, check_password_hash

from campus_events.modules.database_manager import DatabaseManager, DocumentExistsError
from campus_events.modules.exceptions import (
    AuthenticationFailed, PermissionDenied, ValidationError
)
from campus_events.modules.models import (
    User, ROLES, ROLE_STUDENT, ROLE_ORGANIZER, default_avatar_url
)

ACCOUNTS_COLLECTION = 'accounts'
USERS_COLLECTION = 'users'

EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'

EDITABLE_PROFILE_FIELDS = ('name', 'avatar_url', 'student_id', 'organization_name')


@dataclass(frozen=True)
class AuthPrincipal:
    """Opaque identity handed out by the auth provider."""
    uid: str
    email: str
    display_name: str = ''

    def to_dict(self) -> Dict[str, str]:
        return {'uid': self.uid, 'email': self.email, 'display_name': self.display_name}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> 'AuthPrincipal':
        return cls(uid=data['uid'], email=data['email'], display_name=data.get('display_name', ''))


class IdentityManager:
    """
    Authentication provider and identity resolver.

    ``create_account``, ``authenticate`` and ``resolve`` keep no state and
    back the web sessions. ``sign_up``, ``sign_in``, ``sign_out`` and the
    auth state listeners track a single client's current user.
    """

    def __init__(self, database_manager: DatabaseManager, password_min_length: int = 6,
                 demo_accounts: Optional[Dict[str, Dict[str, Any]]] = None):
        """
        Initialize the identity manager.

        Args:
            database_manager: Document store holding accounts and profiles
            password_min_length (int): Minimum sign-up password length
            demo_accounts (dict): Fixed demo credentials keyed by email,
                None disables demo mode
        """
        self.db = database_manager
        self.password_min_length = password_min_length
        self.demo_accounts = demo_accounts or {}
        self.logger = logging.getLogger(__name__)

        self._listeners: List[Callable[[Optional[User]], None]] = []
        self._current_user: Optional[User] = None

    @property
    def current_user(self) -> Optional[User]:
        return self._current_user

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, principal: Optional[AuthPrincipal]) -> Optional[User]:
        """
        Map an authentication principal to an application user.

        Stored role and identifiers come from the profile document; email and
        name come from the principal. A principal without a profile resolves
        to a student with no student id.

        Args:
            principal (AuthPrincipal): Signed-in principal, or None

        Returns:
            User: Resolved user, None when signed out
        """
        if principal is None:
            return None

        demo_user = self._demo_user_by_uid(principal.uid)
        if demo_user:
            return demo_user

        profile = self.db.get_document(USERS_COLLECTION, principal.uid) or {}
        name = principal.display_name or profile.get('name') or principal.email.split('@')[0]

        return User(
            id=principal.uid,
            email=principal.email,
            name=name,
            role=profile.get('role') or ROLE_STUDENT,
            student_id=profile.get('studentId') or '',
            organization_name=profile.get('organizationName') or '',
            avatar_url=profile.get('avatarUrl') or default_avatar_url(name)
        )

    # ------------------------------------------------------------------
    # Auth provider
    # ------------------------------------------------------------------

    def on_auth_state_change(self, callback: Callable[[Optional[User]], None]) -> Callable[[], None]:
        """
        Register a listener; it is called now and after every sign-in/out.

        Returns:
            Callable: Function that removes the listener
        """
        self._listeners.append(callback)
        callback(self._current_user)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _set_current_user(self, user: Optional[User]) -> None:
        self._current_user = user
        for listener in list(self._listeners):
            try:
                listener(user)
            except Exception as e:
                self.logger.error(f"Auth state listener failed: {str(e)}")

    def create_account(self, email: str, password: str, name: str = '', role: str = ROLE_STUDENT,
                       student_id: str = '', organization_name: str = '') -> User:
        """
        Create an account and its profile document.

        Does not change the auth state.

        Args:
            email (str): Email address, used as login
            password (str): Password
            name (str): Display name
            role (str): ``student`` or ``organizer``; fixed after sign-up
            student_id (str): Student number for students
            organization_name (str): Organization for organizers

        Returns:
            User: The new user
        """
        email = (email or '').strip().lower()
        self._validate_sign_up(email, password, role)

        if email in self.demo_accounts:
            raise ValidationError('Email address already exists')

        uid = uuid.uuid4().hex
        display_name = (name or '').strip() or email.split('@')[0]

        try:
            self.db.create_document(ACCOUNTS_COLLECTION, {
                'uid': uid,
                'email': email,
                'displayName': display_name,
                'passwordHash': generate_password_hash(password),
                'createdAt': datetime.now().isoformat()
            }, doc_id=email)
        except DocumentExistsError:
            raise ValidationError('Email address already exists')

        self.db.create_document(USERS_COLLECTION, {
            'email': email,
            'name': display_name,
            'role': role,
            'studentId': student_id if role == ROLE_STUDENT else '',
            'organizationName': organization_name if role == ROLE_ORGANIZER else '',
            'avatarUrl': default_avatar_url(display_name),
            'createdAt': datetime.now().isoformat()
        }, doc_id=uid)

        self.logger.info(f"User signed up: {email} ({role})")
        return self.resolve(AuthPrincipal(uid, email, display_name))

    def authenticate(self, email: str, password: str) -> User:
        """
        Check email and password without changing the auth state.

        Returns:
            User: The authenticated user

        Raises:
            AuthenticationFailed: Unknown email or wrong password
        """
        email = (email or '').strip().lower()

        demo = self.demo_accounts.get(email)
        if demo is not None:
            if password != demo['password']:
                self.logger.warning(f"Authentication failed - invalid demo password: {email}")
                raise AuthenticationFailed()
            self.logger.info(f"Demo user signed in: {email}")
            return self._demo_user(email, demo)

        account = self.db.get_document(ACCOUNTS_COLLECTION, email)
        if not account or not check_password_hash(account['passwordHash'], password or ''):
            self.logger.warning(f"Authentication failed for: {email}")
            raise AuthenticationFailed()

        self.logger.info(f"User signed in: {email}")
        return self.resolve(self.principal_for(email))

    # ------------------------------------------------------------------
    # Single-client auth state
    # ------------------------------------------------------------------

    def sign_up(self, email: str, password: str, name: str = '', role: str = ROLE_STUDENT,
                student_id: str = '', organization_name: str = '') -> User:
        """Create an account and make it this client's current user."""
        user = self.create_account(email, password, name, role, student_id, organization_name)
        self._set_current_user(user)
        return user

    def sign_in(self, email: str, password: str) -> User:
        """Authenticate and make the user this client's current user."""
        user = self.authenticate(email, password)
        self._set_current_user(user)
        return user

    def sign_out(self) -> None:
        if self._current_user is not None:
            self.logger.info(f"User signed out: {self._current_user.email}")
        self._set_current_user(None)

    def principal_for(self, email: str) -> Optional[AuthPrincipal]:
        """Principal of an account (demo or stored), None if unknown."""
        email = (email or '').strip().lower()
        demo = self.demo_accounts.get(email)
        if demo is not None:
            return AuthPrincipal(demo['uid'], email, demo['name'])

        account = self.db.get_document(ACCOUNTS_COLLECTION, email)
        if not account:
            return None
        return AuthPrincipal(account['uid'], account['email'], account.get('displayName', ''))

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def update_profile(self, user: User, changes: Dict[str, Any]) -> User:
        """
        Edit a user's profile.

        Args:
            user (User): User being edited
            changes (Dict[str, Any]): New values for name, avatar_url,
                student_id or organization_name

        Returns:
            User: Updated user

        Raises:
            PermissionDenied: The change tries to alter the role
        """
        if 'role' in changes and changes['role'] != user.role:
            raise PermissionDenied('Role cannot be changed after sign-up')

        unknown = set(changes) - set(EDITABLE_PROFILE_FIELDS) - {'role'}
        if unknown:
            raise ValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")

        if self._demo_user_by_uid(user.id):
            raise PermissionDenied('Demo accounts cannot be edited')

        if 'name' in changes and not str(changes['name']).strip():
            raise ValidationError('Name is required')

        patch = {
            'email': user.email,
            'role': user.role,
            'name': str(changes.get('name', user.name)).strip(),
            'avatarUrl': changes.get('avatar_url', user.avatar_url),
            'studentId': changes.get('student_id', user.student_id) if user.role == ROLE_STUDENT else '',
            'organizationName': (changes.get('organization_name', user.organization_name)
                                 if user.role == ROLE_ORGANIZER else '')
        }

        if self.db.get_document(USERS_COLLECTION, user.id) is None:
            self.db.create_document(USERS_COLLECTION, patch, doc_id=user.id)
        else:
            self.db.update_document(USERS_COLLECTION, user.id, patch)

        if 'name' in changes:
            account = self.db.get_document(ACCOUNTS_COLLECTION, user.email)
            if account:
                self.db.update_document(ACCOUNTS_COLLECTION, user.email, {'displayName': patch['name']})

        updated = User(
            id=user.id,
            email=user.email,
            name=patch['name'],
            role=user.role,
            student_id=patch['studentId'],
            organization_name=patch['organizationName'],
            avatar_url=patch['avatarUrl']
        )
        self.logger.info(f"Profile updated: {user.email}")

        if self._current_user is not None and self._current_user.id == user.id:
            self._set_current_user(updated)
        return updated

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate_sign_up(self, email: str, password: str, role: str) -> None:
        if not re.match(EMAIL_PATTERN, email):
            raise ValidationError('Invalid email address format')

        if not password or len(password) < self.password_min_length:
            raise ValidationError(f'Password must be at least {self.password_min_length} characters long')

        if role not in ROLES:
            raise ValidationError(f'Role must be one of: {", ".join(ROLES)}')

    def _demo_user(self, email: str, demo: Dict[str, Any]) -> User:
        return User(
            id=demo['uid'],
            email=email,
            name=demo['name'],
            role=demo['role'],
            student_id=demo.get('studentId', ''),
            organization_name=demo.get('organizationName', ''),
            avatar_url=default_avatar_url(demo['name'])
        )

    def _demo_user_by_uid(self, uid: str) -> Optional[User]:
        for email, demo in self.demo_accounts.items():
            if demo['uid'] == uid:
                return self._demo_user(email, demo)
        return None
