"""Callback endpoints invoked by the auth provider on sign-in and session reads."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session
from schemas.auth import SessionPayload, SignInRequest, SignInResponse
from services import identity_service

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/sign-in", response_model=SignInResponse)
async def sign_in(
    data: SignInRequest,
    db: AsyncSession = Depends(get_async_session),
) -> SignInResponse:
    """
    Persist the signed-in identity.

    Returns 403 (via IdentitySyncError) when the user record could not be
    written; the provider must then deny the sign-in.
    """
    user = await identity_service.upsert_user_on_sign_in(db, data.user, data.account)
    return SignInResponse(allowed=True, user_id=user.id)


@router.post("/session", response_model=SessionPayload, response_model_exclude_none=True)
async def shape_session(
    session: SessionPayload,
    db: AsyncSession = Depends(get_async_session),
) -> SessionPayload:
    """Attach the local user id to the session when the email is known."""
    if session.user is not None:
        user_id = await identity_service.resolve_session_user(db, session.user.email)
        if user_id is not None:
            session.user.id = user_id
    return session
