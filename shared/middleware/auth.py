"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
Each role keeps its own account table, so the JWT carries both the account id and the role.
"""

from typing import Optional, Union

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.models.models import Admin, Client, ServiceGiver, UserRole
from shared.utils.security import verify_access_token

security = HTTPBearer(auto_error=False)

Account = Union[Admin, Client, ServiceGiver]

ACCOUNT_MODELS = {
    UserRole.ADMIN: Admin,
    UserRole.CLIENT: Client,
    UserRole.GIVER: ServiceGiver,
}


class TokenData:
    def __init__(self, payload: dict):
        self.account_id: int = int(payload["sub"])
        self.role: UserRole = UserRole(payload["role"])
        self.email: str = payload["email"]
        self.jti: str = payload["jti"]
        self.payload = payload


class Principal:
    """The authenticated caller: token claims plus the loaded account row."""

    def __init__(self, token: TokenData, account: Account):
        self.token = token
        self.account = account

    @property
    def id(self) -> int:
        return self.token.account_id

    @property
    def role(self) -> UserRole:
        return self.token.role

    def __repr__(self) -> str:
        return f"<Principal {self.role.value}:{self.id}>"


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    """
    Extract and validate JWT from Authorization header.
    Checks deny-list in Redis to handle revoked tokens (logout).
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = verify_access_token(credentials.credentials)
        token = TokenData(payload)
    except (JWTError, KeyError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if await RedisCache(redis).is_token_revoked(token.jti):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
        )

    return token


async def get_current_principal(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """Load the account row for the token's role and subject."""
    model = ACCOUNT_MODELS[token_data.role]
    account = await db.get(model, token_data.account_id)
    if not account:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account not found",
        )
    return Principal(token_data, account)


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: UserRole):
        self.roles = roles

    async def __call__(
        self,
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        if principal.role not in self.roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Required role: {[r.value for r in self.roles]}",
            )
        return principal


# Convenience role dependencies
require_client = RoleRequired(UserRole.CLIENT)
require_giver = RoleRequired(UserRole.GIVER)
require_admin = RoleRequired(UserRole.ADMIN)
require_any = RoleRequired(UserRole.CLIENT, UserRole.GIVER, UserRole.ADMIN)
