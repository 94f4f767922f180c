"""Authentication, invites, account recovery and the application lock.

The session manager owns the ``currentUser`` pointer and the lock flag. User
records themselves are written through the entity store, so every
credential change is audited, persisted and synced like any other mutation.
"""

from __future__ import annotations

import hmac
import uuid
from dataclasses import replace
from datetime import timedelta
from typing import Optional

from . import core_logic, data_manager, log, security
from .constants import (
    ActivityAction,
    LoginResult,
    RecoveryMethod,
    RecoveryResult,
    RegistrationResult,
    StorageKey,
    StoreResult,
    UserRole,
)
from .core_logic import RuntimeContext, synchronized
from .models import Registration, SessionSnapshot, User, UserInvite, UserPublicInfo
from .time_utils import parse_iso, to_iso


DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_RECOVERY_CODE = "POSSTORE-ADMIN-INIT"


def _snapshot_of(user: User) -> SessionSnapshot:
    return SessionSnapshot(user_id=user.id, username=user.username, full_name=user.full_name, role=user.role)


def _persist_pointer(context: RuntimeContext) -> None:
    snapshot = context.session.snapshot
    if snapshot is None:
        data_manager.safe_remove(context.storage, StorageKey.CURRENT_USER.value)
        return
    data_manager.safe_save_many(
        context.storage,
        {
            StorageKey.CURRENT_USER.value: {
                "id": snapshot.user_id,
                "username": snapshot.username,
                "fullName": snapshot.full_name,
                "role": getattr(snapshot.role, "value", snapshot.role),
            }
        },
    )


def _start_session(context: RuntimeContext, user: User) -> None:
    session = context.session
    session.current_user_id = user.id
    session.snapshot = _snapshot_of(user)
    session.is_app_locked = False
    session.last_input_at = context.clock()
    _persist_pointer(context)


def _end_session(context: RuntimeContext) -> None:
    session = context.session
    session.current_user_id = None
    session.snapshot = None
    session.is_app_locked = False
    session.last_input_at = None
    _persist_pointer(context)


def current_user(context: RuntimeContext) -> Optional[User]:
    """Return the signed-in user's record, or ``None``."""
    user_id = context.session.current_user_id
    if user_id is None:
        return None
    try:
        return core_logic.get_user(context, user_id)
    except core_logic.MissingReferenceError:
        return None


def is_locked_out(context: RuntimeContext, user: User) -> bool:
    until = parse_iso(user.lockout_until)
    return until is not None and until > context.clock()


# ---------------------------------------------------------------------------
# Sign-in and sign-out
# ---------------------------------------------------------------------------


@synchronized
def login(context: RuntimeContext, username: str, password: str, code: Optional[str] = None) -> LoginResult:
    """Authenticate ``username`` and open a session.

    Checks run in order: unknown or inactive user (``INVALID``), active
    lockout (``LOCKED``), wrong password (``INVALID``, counted towards the
    lockout), then the second factor when enabled (``2FA_REQUIRED`` without
    a code, ``INVALID_2FA`` for a wrong one).

    Args:
        context (RuntimeContext): Active runtime context.
        username (str): Login name, matched ignoring case.
        password (str): Plain-text password.
        code (str | None): TOTP code for users with 2FA enabled.

    Returns:
        LoginResult: Outcome of the attempt.
    """
    user = core_logic.find_user_by_username(context, username)
    if user is None or not user.active:
        log.warning("Login rejected for unknown or inactive user '%s'", username)
        return LoginResult.INVALID
    if is_locked_out(context, user):
        log.warning("Login rejected for locked user '%s'", user.username)
        return LoginResult.LOCKED

    now = context.clock()
    if not security.verify_password(password, user.salt, user.password_hash):
        # A lockout that has run out starts a fresh count.
        previous = 0 if parse_iso(user.lockout_until) else user.failed_login_attempts
        attempts = previous + 1
        lockout_until = None
        if attempts >= context.config.max_failed_attempts:
            lockout_until = to_iso(now + context.config.lockout_duration)
        core_logic.update_user(
            context,
            replace(user, failed_login_attempts=attempts, lockout_until=lockout_until),
            action=ActivityAction.SECURITY,
            details=f"Failed login for {user.username} ({attempts})",
        )
        if lockout_until:
            log.warning("User '%s' locked until %s", user.username, lockout_until)
        return LoginResult.INVALID

    if user.is_two_factor_enabled and user.two_factor_secret:
        if not code:
            return LoginResult.TWO_FACTOR_REQUIRED
        if not security.verify_totp(user.two_factor_secret, code, now):
            core_logic.update_user(
                context,
                user,
                action=ActivityAction.SECURITY,
                details=f"Invalid 2FA code for {user.username}",
            )
            return LoginResult.INVALID_TWO_FACTOR

    stamp = to_iso(now)
    signed_in = replace(user, failed_login_attempts=0, lockout_until=None, last_login=stamp, last_active=stamp)
    _start_session(context, signed_in)
    core_logic.update_user(context, signed_in, action=ActivityAction.LOGIN, details=f"Signed in: {user.username}")
    log.info("User '%s' signed in", user.username)
    return LoginResult.SUCCESS


@synchronized
def logout(context: RuntimeContext) -> None:
    snapshot = context.session.snapshot
    _end_session(context)
    if snapshot is not None:
        log.info("User '%s' signed out", snapshot.username)


@synchronized
def restore_session(context: RuntimeContext) -> Optional[SessionSnapshot]:
    """Re-open the session saved under ``currentUser`` if its user still qualifies.

    Returns:
        SessionSnapshot | None: The restored session, or ``None`` when the
            pointer is missing or names a deleted or inactive user.
    """
    raw = data_manager.safe_load(context.storage, StorageKey.CURRENT_USER.value, None)
    if not isinstance(raw, dict) or not raw.get("id"):
        return None
    try:
        user = core_logic.get_user(context, str(raw["id"]))
    except core_logic.MissingReferenceError:
        _end_session(context)
        return None
    if not user.active:
        _end_session(context)
        return None
    _start_session(context, user)
    return context.session.snapshot


@synchronized
def refresh_session(context: RuntimeContext) -> None:
    """Re-read the session user after the user list was replaced.

    The session ends when its user disappeared or was deactivated.
    """
    user_id = context.session.current_user_id
    if user_id is None:
        return
    user = current_user(context)
    if user is None or not user.active:
        log.warning("Session user '%s' no longer valid; signing out", user_id)
        _end_session(context)
        return
    context.session.snapshot = _snapshot_of(user)
    _persist_pointer(context)


# ---------------------------------------------------------------------------
# Application lock
# ---------------------------------------------------------------------------


def manual_lock_app(context: RuntimeContext) -> None:
    with context.lock:
        if context.session.current_user_id is not None:
            context.session.is_app_locked = True


def unlock_app(context: RuntimeContext, password: str) -> bool:
    """Lift the lock screen with the current user's password."""
    with context.lock:
        user = current_user(context)
        if user is None:
            return False
        if not security.verify_password(password, user.salt, user.password_hash):
            log.warning("Unlock failed for '%s'", user.username)
            return False
        context.session.is_app_locked = False
        context.session.last_input_at = context.clock()
        return True


def record_input_activity(context: RuntimeContext) -> None:
    context.session.last_input_at = context.clock()


def check_idle_lock(context: RuntimeContext) -> bool:
    """Lock the app when the idle timeout has elapsed.

    A timeout of zero minutes disables the auto-lock.

    Returns:
        bool: ``True`` when this call locked the app.
    """
    with context.lock:
        session = context.session
        minutes = context.state.settings.security_config.auto_lock_minutes
        if session.current_user_id is None or session.is_app_locked or minutes <= 0:
            return False
        last_input = session.last_input_at or context.clock()
        if context.clock() - last_input < timedelta(minutes=minutes):
            return False
        session.is_app_locked = True
        log.info("Application locked after %d idle minutes", minutes)
        return True


# ---------------------------------------------------------------------------
# Invites and registration
# ---------------------------------------------------------------------------


@synchronized
def generate_invite(context: RuntimeContext, role: UserRole) -> str:
    """Create a single-use invite for ``role`` and return its code."""
    snapshot = context.session.snapshot
    invite = UserInvite(
        code=security.generate_invite_code(),
        role=role,
        created_at=to_iso(context.clock()),
        created_by=snapshot.username if snapshot is not None else "System",
    )
    core_logic.add_invite(context, invite)
    return invite.code


def _hash_credentials(context: RuntimeContext, password: str, answer: Optional[str]) -> tuple[str, str, Optional[str]]:
    salt = security.generate_salt(context.config.bcrypt_rounds)
    password_hash = security.hash_password(password, salt)
    answer_hash = security.hash_security_answer(answer, salt) if answer else None
    return salt, password_hash, answer_hash


@synchronized
def register_with_invite(context: RuntimeContext, code: str, registration: Registration) -> RegistrationResult:
    """Create an account from an invite; the invite is consumed on success.

    Returns:
        RegistrationResult: ``INVALID_CODE``, ``USERNAME_EXISTS``,
            ``WEAK_PASSWORD`` or ``SUCCESS``.
    """
    wanted = code.strip().upper()
    invite = next((item for item in context.state.user_invites if item.code == wanted), None)
    if invite is None:
        log.warning("Registration with unknown invite code")
        return RegistrationResult.INVALID_CODE
    if core_logic.find_user_by_username(context, registration.username) is not None:
        return RegistrationResult.USERNAME_EXISTS
    if not security.is_password_strong(registration.password):
        return RegistrationResult.WEAK_PASSWORD

    salt, password_hash, answer_hash = _hash_credentials(context, registration.password, registration.security_answer)
    user = User(
        id=uuid.uuid4().hex,
        username=registration.username.strip(),
        password_hash=password_hash,
        salt=salt,
        full_name=registration.full_name,
        role=invite.role,
        recovery_code=security.generate_recovery_code(),
        security_question=registration.security_question,
        security_answer_hash=answer_hash,
    )
    result = core_logic.add_user(
        context,
        user,
        consume_invite=invite.code,
        details=f"Registered {user.username} with an invite",
    )
    if result is not StoreResult.SUCCESS:
        return RegistrationResult.USERNAME_EXISTS
    log.info("Registered user '%s' as %s", user.username, getattr(user.role, "value", user.role))
    return RegistrationResult.SUCCESS


@synchronized
def ensure_default_admin(context: RuntimeContext) -> Optional[User]:
    """Seed the ``admin`` account on a store that has no users.

    Returns:
        User | None: The created admin, or ``None`` when users already exist.
    """
    if context.state.users:
        return None
    salt, password_hash, _ = _hash_credentials(context, context.config.default_admin_password, None)
    admin = User(
        id=uuid.uuid4().hex,
        username=DEFAULT_ADMIN_USERNAME,
        password_hash=password_hash,
        salt=salt,
        full_name="Administrator",
        role=UserRole.ADMIN,
        recovery_code=DEFAULT_ADMIN_RECOVERY_CODE,
    )
    core_logic.add_user(context, admin, details="Seeded default administrator")
    log.warning("Created default administrator; change its password after the first login")
    return admin


# ---------------------------------------------------------------------------
# Recovery
# ---------------------------------------------------------------------------


def _recovery_matches(user: User, method: RecoveryMethod, answer: str) -> bool:
    if method == RecoveryMethod.SECURITY_QUESTION:
        return security.verify_security_answer(answer, user.salt, user.security_answer_hash)
    if method == RecoveryMethod.CODE:
        return bool(user.recovery_code) and hmac.compare_digest(
            user.recovery_code.encode("utf-8"), answer.strip().encode("utf-8")
        )
    return False


def verify_recovery_attempt(context: RuntimeContext, username: str, method: RecoveryMethod, answer: str) -> bool:
    user = core_logic.find_user_by_username(context, username)
    return user is not None and _recovery_matches(user, method, answer)


@synchronized
def recover_account(
    context: RuntimeContext,
    username: str,
    method: RecoveryMethod,
    answer: str,
    new_password: str,
) -> RecoveryResult:
    """Reset a forgotten password with the recovery code or security answer.

    Failed attempts and lockout are cleared. The password is re-salted
    unless a code recovery has to keep the salt its security answer hash
    was derived under.

    Returns:
        RecoveryResult: ``USER_NOT_FOUND``, ``INVALID``, ``WEAK_PASSWORD`` or
            ``SUCCESS``.
    """
    user = core_logic.find_user_by_username(context, username)
    if user is None:
        return RecoveryResult.USER_NOT_FOUND
    if not _recovery_matches(user, method, answer):
        core_logic.update_user(
            context,
            user,
            action=ActivityAction.SECURITY,
            details=f"Failed recovery for {user.username}",
        )
        return RecoveryResult.INVALID
    if not security.is_password_strong(new_password):
        return RecoveryResult.WEAK_PASSWORD

    answer_hash = user.security_answer_hash
    if method == RecoveryMethod.SECURITY_QUESTION:
        salt = security.generate_salt(context.config.bcrypt_rounds)
        answer_hash = security.hash_security_answer(answer, salt)
    elif answer_hash:
        # The stored answer hash is bound to the current salt.
        salt = user.salt
    else:
        salt = security.generate_salt(context.config.bcrypt_rounds)
    recovered = replace(
        user,
        salt=salt,
        password_hash=security.hash_password(new_password, salt),
        security_answer_hash=answer_hash,
        failed_login_attempts=0,
        lockout_until=None,
    )
    core_logic.update_user(context, recovered, action=ActivityAction.RECOVERY, details=f"Account recovered: {user.username}")
    log.info("Password reset through %s for '%s'", method.value, user.username)
    return RecoveryResult.SUCCESS


def get_user_public_info(context: RuntimeContext, username: str) -> Optional[UserPublicInfo]:
    user = core_logic.find_user_by_username(context, username)
    if user is None:
        return None
    return UserPublicInfo(
        username=user.username,
        security_question=user.security_question,
        has_recovery_code=bool(user.recovery_code),
    )


# ---------------------------------------------------------------------------
# Second factor
# ---------------------------------------------------------------------------


@synchronized
def enable_two_factor(context: RuntimeContext, user_id: str, secret: str, code: str) -> bool:
    """Turn on 2FA once the user proves the authenticator produces ``code``."""
    user = core_logic.get_user(context, user_id)
    if not security.verify_totp(secret, code, context.clock()):
        log.warning("2FA enrolment failed for '%s'", user.username)
        return False
    core_logic.update_user(
        context,
        replace(user, is_two_factor_enabled=True, two_factor_secret=secret),
        action=ActivityAction.SECURITY,
        details=f"2FA enabled for {user.username}",
    )
    return True


@synchronized
def disable_two_factor(context: RuntimeContext, user_id: str) -> None:
    user = core_logic.get_user(context, user_id)
    core_logic.update_user(
        context,
        replace(user, is_two_factor_enabled=False, two_factor_secret=None),
        action=ActivityAction.SECURITY,
        details=f"2FA disabled for {user.username}",
    )
