"""Registry of the people allowed to work the till.

Users are either admins or cashiers and are unique by username. Deactivating
a user keeps the row so past sales still name who rang them up; only active
users may ring up new sales (see :func:`require_active_cashier`). The till
must always keep at least one active admin once one has been registered.

Passwords are optional here and, when given, stored as bcrypt hashes with the
same cost factor as customer credit passwords.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, List, Optional

from . import customers, data_manager, log
from .constants import UserRole
from .core_logic import (
    BusinessRuleViolation,
    DuplicateUserError,
    InactiveUserError,
    LastAdminError,
    MissingReferenceError,
    RuntimeContext,
    _get_cache_bucket,
    _invalidate_cache,
    generate_id,
    resolve_timestamp,
)


_USER_COLUMNS: Dict[str, str] = {
    "username": "Username",
    "name": "Name",
    "role": "Role",
    "email": "Email",
}


def _ensure_users_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "users")
    if "all" not in bucket:
        all_users = list(data_manager.iter_users(context.workbook))
        bucket["all"] = all_users
        bucket["active"] = [user for user in all_users if user.is_active]
        bucket["by_id"] = {user.user_id: user for user in all_users}
        log.debug(
            "Populated users cache with %d entries (%d active)",
            len(all_users),
            len(bucket["active"]),
        )
    return bucket


def list_users(context: RuntimeContext, *, include_inactive: bool = False) -> List[data_manager.UserRow]:
    """Return till users in sheet order, active ones only unless asked."""
    cache = _ensure_users_cache(context)
    source = cache["all"] if include_inactive else cache["active"]
    return list(source)


def list_users_by_role(context: RuntimeContext, role: UserRole) -> List[data_manager.UserRow]:
    """Return the active users holding ``role``."""
    role = UserRole(role)
    return [user for user in list_users(context) if user.role is role]


def get_user_by_id(context: RuntimeContext, user_id: str) -> data_manager.UserRow:
    """Resolve a user by identifier, active or not.

    Raises:
        MissingReferenceError: If the user is not registered.
    """
    try:
        return _ensure_users_cache(context)["by_id"][user_id]
    except KeyError as exc:
        log.warning("User lookup failed for id '%s'", user_id)
        raise MissingReferenceError(f"Unknown user id: {user_id}") from exc


def get_user_by_username(context: RuntimeContext, username: str) -> data_manager.UserRow:
    """Resolve a user by username.

    Raises:
        MissingReferenceError: If no user has that username.
    """
    for user in list_users(context, include_inactive=True):
        if user.username == username:
            return user
    log.warning("User lookup failed for username '%s'", username)
    raise MissingReferenceError(f"Unknown username: {username}")


def require_active_cashier(context: RuntimeContext, user_id: str) -> data_manager.UserRow:
    """Return the user ringing up a sale, refusing unknown or inactive ones.

    Raises:
        MissingReferenceError: If the user is not registered.
        InactiveUserError: If the user has been deactivated.
    """
    user = get_user_by_id(context, user_id)
    if not user.is_active:
        log.warning("Inactive user '%s' attempted to ring up a sale", user_id)
        raise InactiveUserError(f"User '{user_id}' is inactive")
    return user


def _require_unique(
    context: RuntimeContext,
    *,
    username: Optional[str],
    user_id: Optional[str] = None,
    exclude_id: Optional[str] = None,
) -> None:
    for user in list_users(context, include_inactive=True):
        if user.user_id == exclude_id:
            continue
        if user_id is not None and user.user_id == user_id:
            raise DuplicateUserError(f"User id already registered: {user_id}")
        if username is not None and user.username == username:
            log.warning("Username '%s' already registered to '%s'", username, user.user_id)
            raise DuplicateUserError(f"Username already registered: {username}")


def _require_other_active_admin(context: RuntimeContext, user: data_manager.UserRow) -> None:
    if user.role is not UserRole.ADMIN or not user.is_active:
        return
    others = [
        admin
        for admin in list_users_by_role(context, UserRole.ADMIN)
        if admin.user_id != user.user_id
    ]
    if not others:
        log.warning("Refused to remove the last active admin '%s'", user.user_id)
        raise LastAdminError("The till must keep at least one active admin")


def add_user(
    context: RuntimeContext,
    *,
    username: str,
    name: str,
    role: UserRole = UserRole.CASHIER,
    email: str = "",
    password: Optional[str] = None,
    user_id: Optional[str] = None,
) -> data_manager.UserRow:
    """Register an active till user.

    ``user_id`` lets the caller pick a stable identifier such as the one named
    by ``DefaultCashier``; otherwise one is generated.

    Raises:
        DuplicateUserError: If the username or identifier is taken.
        BusinessRuleViolation: If the username or name is blank.
    """
    username = username.strip()
    if not username or not name.strip():
        raise BusinessRuleViolation("Username and name must not be blank")

    with context.lock:
        _require_unique(context, username=username, user_id=user_id)
        created = resolve_timestamp(None)
        user = data_manager.UserRow(
            user_id=user_id or generate_id("U", when=created),
            username=username,
            name=name,
            role=UserRole(role),
            email=email,
            password_hash=customers.hash_password(context, password) if password else "",
            is_active=True,
            created_at=created.isoformat(),
        )
        data_manager.append_user(context.workbook, user)
        _invalidate_cache(context, "users")
    log.info("Added %s '%s' (%s)", user.role.value, user.user_id, username)
    return user


def update_user(context: RuntimeContext, user_id: str, **changes: Any) -> data_manager.UserRow:
    """Apply field changes to a user; ``password`` is re-hashed.

    Raises:
        MissingReferenceError: If the user is unknown.
        DuplicateUserError: If the new username belongs to someone else.
        LastAdminError: If the last active admin would be demoted.
        KeyError: If an unsupported field is supplied.
    """
    password = changes.pop("password", None)
    unknown = set(changes) - set(_USER_COLUMNS)
    if unknown:
        raise KeyError(f"Unknown user field(s): {', '.join(sorted(unknown))}")
    if "role" in changes:
        changes["role"] = UserRole(changes["role"])

    with context.lock:
        current = get_user_by_id(context, user_id)
        _require_unique(context, username=changes.get("username"), exclude_id=user_id)
        if changes.get("role", current.role) is not UserRole.ADMIN:
            _require_other_active_admin(context, current)
        field_values = {_USER_COLUMNS[name]: value for name, value in changes.items()}
        if password:
            changes["password_hash"] = customers.hash_password(context, password)
            field_values["PasswordHash"] = changes["password_hash"]
        if field_values:
            data_manager.update_user(context.workbook, user_id, field_values=field_values)
            _invalidate_cache(context, "users")
    log.info("Updated user '%s'", user_id)
    return replace(current, **changes)


def set_user_active(context: RuntimeContext, user_id: str, active: bool) -> data_manager.UserRow:
    """Activate or deactivate a user.

    Raises:
        MissingReferenceError: If the user is unknown.
        LastAdminError: If the last active admin would be deactivated.
    """
    with context.lock:
        current = get_user_by_id(context, user_id)
        if not active:
            _require_other_active_admin(context, current)
        data_manager.update_user(context.workbook, user_id, field_values={"IsActive": active})
        _invalidate_cache(context, "users")
    log.info("%s user '%s'", "Activated" if active else "Deactivated", user_id)
    return replace(current, is_active=active)


def toggle_user_status(context: RuntimeContext, user_id: str) -> data_manager.UserRow:
    """Flip a user between active and inactive."""
    return set_user_active(context, user_id, not get_user_by_id(context, user_id).is_active)


def delete_user(context: RuntimeContext, user_id: str) -> None:
    """Remove a user from the registry.

    Sales keep the cashier id and name they were recorded with.

    Raises:
        MissingReferenceError: If the user is unknown.
        LastAdminError: If the user is the last active admin.
    """
    with context.lock:
        current = get_user_by_id(context, user_id)
        _require_other_active_admin(context, current)
        data_manager.delete_user(context.workbook, user_id)
        _invalidate_cache(context, "users")
    log.info("Deleted user '%s'", user_id)
