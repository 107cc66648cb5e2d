"""
services/auth/router.py
Email/password authentication against the per-role account tables.
Implements: Login → JWT issue → Me → Logout, plus client/giver registration.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from shared.middleware.auth import (
    ACCOUNT_MODELS,
    Principal,
    get_current_principal,
)
from shared.models.models import (
    Client,
    GiverService,
    Profile,
    ServiceGiver,
    ServiceType,
    UserRole,
)
from shared.schemas.schemas import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
)
from shared.utils.security import (
    create_access_token,
    get_token_remaining_ttl,
    hash_password,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Authentication"])

REGISTRATION_ROLES = {"client": UserRole.CLIENT, "giver": UserRole.GIVER}


# ── Helpers ───────────────────────────────────────────────────

def parse_role(role: str) -> Optional[UserRole]:
    """'Admin' | 'Client' | 'Giver' (case-insensitive). Unknown roles give None."""
    for member in UserRole:
        if member.value.lower() == (role or "").strip().lower():
            return member
    return None


async def authenticate_login(
    db: AsyncSession, email: str, password: str, role: str
) -> Optional[dict]:
    """
    Look up the account for `role` and check the password.
    Returns {"id", "role"} on success, None for any mismatch.
    Database errors are not caught here.
    """
    user_role = parse_role(role)
    if user_role is None:
        return None

    model = ACCOUNT_MODELS[user_role]
    result = await db.execute(select(model).where(model.email == email.strip().lower()))
    account = result.scalar_one_or_none()
    if account is None or not verify_password(password, account.password_hash):
        return None

    return {"id": account.id, "role": user_role.value}


async def _email_taken(db: AsyncSession, email: str) -> bool:
    for model in (Client, ServiceGiver):
        result = await db.execute(select(model.email).where(model.email == email))
        if result.scalar_one_or_none():
            return True
    return False


# ── Endpoints ─────────────────────────────────────────────────

@router.post("/login", response_model=LoginResponse, summary="Log in with email, password and role")
async def login(data: LoginRequest, db: AsyncSession = Depends(get_db)):
    authenticated = await authenticate_login(db, data.email, data.password, data.role)
    if authenticated is None:
        logger.warning("Failed login for %s as %s", data.email, data.role)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials or role.",
        )

    access_token, _ = create_access_token(
        subject_id=authenticated["id"],
        role=authenticated["role"],
        email=data.email.strip().lower(),
    )
    logger.info("%s %s logged in", authenticated["role"], authenticated["id"])

    return LoginResponse(
        id=authenticated["id"],
        role=authenticated["role"],
        access_token=access_token,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.post("/logout", response_model=MessageResponse, summary="Log out")
async def logout(
    principal: Principal = Depends(get_current_principal),
    redis=Depends(get_redis),
):
    """Add the current access token's JTI to the Redis deny-list until it expires."""
    ttl = get_token_remaining_ttl(principal.token.payload)
    if ttl > 0:
        await RedisCache(redis).revoke_token(principal.token.jti, ttl)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=MeResponse, summary="Get current account")
async def get_me(principal: Principal = Depends(get_current_principal)):
    return MeResponse(
        id=principal.id,
        role=principal.role.value,
        name=principal.account.name,
        email=principal.account.email,
    )


@router.post(
    "/profile/{role}",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a client or giver account",
)
async def register(
    role: str,
    data: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Create a Client or Service_Giver account.
    Givers also get a Profile row and, when `category` names a known service type
    and `rate` is set, an initial priced offering.
    """
    user_role = REGISTRATION_ROLES.get(role.lower())
    if user_role is None:
        raise HTTPException(status_code=404, detail="Unknown account type")

    email = data.email.lower()
    if await _email_taken(db, email):
        raise HTTPException(status_code=409, detail="An account with this email already exists")

    model = ACCOUNT_MODELS[user_role]
    account = model(
        name=data.name,
        email=email,
        phone=data.phone,
        password_hash=hash_password(data.password),
    )
    db.add(account)
    await db.flush()

    if user_role == UserRole.GIVER:
        db.add(Profile(
            giver_id=account.giver_id,
            display_name=data.name,
            bio=data.bio,
            city=data.city,
            website=data.website,
            portfolio_links=data.portfolio_links,
        ))
        if data.category and data.rate is not None:
            result = await db.execute(
                select(ServiceType).where(ServiceType.service_name == data.category)
            )
            service = result.scalar_one_or_none()
            if service:
                db.add(GiverService(
                    giver_id=account.giver_id,
                    service_id=service.service_id,
                    price_rwf=data.rate,
                ))
            else:
                logger.warning("Registration for %s named unknown category %r", email, data.category)

    await db.commit()
    logger.info("Registered %s %s", user_role.value, account.id)

    return RegisterResponse(id=account.id, role=user_role.value, name=account.name, email=account.email)
