"""Create Steptrack users and attach Google credentials to them.

``provision_user`` registers a user explicitly (name and email, tokens
optional).  The OAuth consent/redirect handshake happens outside this service.  Its
result (the Google profile and token pair) is handed to
``link_google_account``, which finds the user by Google id, then by email,
and otherwise provisions a new one.

Google only returns a refresh token on the first consent (or when consent
is forced), so later logins arrive without one.  ``User.apply_tokens``
keeps the stored refresh token in that case, so a routine re-login never
disconnects nightly sync.
"""

from __future__ import annotations

import logging
import uuid

from steptrack.steps.base import OAuthTokens, User
from steptrack.steps.errors import Conflict
from steptrack.steps.storage.base import UserDirectory

logger = logging.getLogger("steptrack.steps.accounts")


async def link_google_account(
    users: UserDirectory,
    *,
    external_id: str,
    email: str,
    name: str,
    tokens: OAuthTokens,
) -> User:
    """Create or update the user for a completed Google login.

    Args:
        users:       User directory to read and write.
        external_id: Google account id from the profile.
        email:       Primary email from the profile.
        name:        Display name from the profile.
        tokens:      Tokens issued by the login; ``refresh_token`` may be None.

    Returns:
        The saved User.
    """
    user = await users.find_by_external_id(external_id)
    if user is not None:
        logger.info("Updating Google tokens for user %s", user.user_id)
        return await users.save(user.apply_tokens(tokens))

    user = await users.find_by_email(email)
    if user is not None:
        logger.info("Linking Google account to existing user %s", user.user_id)
        user.external_id = external_id
        return await users.save(user.apply_tokens(tokens))

    user = User(user_id=uuid.uuid4(), name=name, email=email, external_id=external_id)
    user.apply_tokens(tokens)
    if not user.has_refresh_token:
        logger.warning(
            "New user %s granted no refresh token; nightly sync disabled until re-consent",
            user.user_id,
        )
    logger.info("Provisioned user %s from Google login", user.user_id)
    return await users.save(user)


async def provision_user(
    users: UserDirectory,
    name: str,
    email: str,
    tokens: OAuthTokens | None = None,
) -> User:
    """Register a user outside the Google login flow.

    Raises:
        Conflict: A user with this email already exists.
    """
    if await users.find_by_email(email) is not None:
        raise Conflict(f"User with email {email} already exists")

    user = User(user_id=uuid.uuid4(), name=name, email=email)
    if tokens is not None:
        user.apply_tokens(tokens)
    try:
        saved = await users.save(user)
    except ValueError as exc:
        # Lost a race with another registration for the same email
        raise Conflict(str(exc)) from exc
    logger.info(
        "Provisioned user %s (google_connected=%s)", saved.user_id, saved.has_refresh_token
    )
    return saved
