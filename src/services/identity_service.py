"""Mirrors auth-provider identities into the local users table."""
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.base import utcnow
from models.user import User
from schemas.auth import ProviderAccount, ProviderProfile
from services.exceptions import IdentitySyncError, StoreError

logger = logging.getLogger(__name__)


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    """Look up a user by email."""
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def upsert_user_on_sign_in(
    db: AsyncSession,
    profile: ProviderProfile,
    account: ProviderAccount,
) -> User:
    """
    Create or refresh the local user for a successful provider sign-in.

    New users get every supplied field. Returning users get their name, image,
    tokens and last_sign_in refreshed; id and email never change.

    Raises:
        IdentitySyncError: If the user could not be persisted. The transaction
            is rolled back so no partial record remains, and the sign-in must
            be denied.
    """
    try:
        user = await get_user_by_email(db, profile.email)
        if user is None:
            user = User(
                email=profile.email,
                name=profile.name,
                image=profile.image,
                provider=account.provider,
                provider_account_id=account.provider_account_id,
                access_token=account.access_token,
                refresh_token=account.refresh_token,
            )
            db.add(user)
            created = True
        else:
            user.name = profile.name
            user.image = profile.image
            user.access_token = account.access_token
            user.refresh_token = account.refresh_token
            user.last_sign_in = utcnow()
            created = False
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("identity_sync_failed", extra={"provider": account.provider})
        raise IdentitySyncError from e

    logger.info(
        "user_signed_in",
        extra={"user_id": user.id, "provider": account.provider, "created": created},
    )
    return user


async def resolve_session_user(db: AsyncSession, email: str | None) -> str | None:
    """
    Return the local user id for a session email, or None if there is none.

    A missing user is not an error: the session simply carries no id and any
    operation that needs one fails closed.
    """
    if not email:
        return None
    try:
        user = await get_user_by_email(db, email)
    except SQLAlchemyError as e:
        logger.exception("session_user_lookup_failed")
        raise StoreError from e
    return user.id if user is not None else None
