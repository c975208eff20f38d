# backend/stockfolio/routes/auth.py
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..models.user import User, UserCreate, UserLogin, Token
from ..services.auth import IdentityProvider, identity_provider

router = APIRouter()
security = HTTPBearer(auto_error=False)

def get_identity_provider() -> IdentityProvider:
    return identity_provider

def get_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> str:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return credentials.credentials

@router.post("/register", response_model=User)
async def register(user_data: UserCreate, identity: IdentityProvider = Depends(get_identity_provider)):
    try:
        return identity.sign_up(user_data)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

@router.post("/login", response_model=Token)
async def login(user_data: UserLogin, identity: IdentityProvider = Depends(get_identity_provider)):
    return identity.sign_in(user_data)

@router.post("/logout")
async def logout(token: str = Depends(get_token), identity: IdentityProvider = Depends(get_identity_provider)):
    identity.sign_out(token)
    return {"message": "Signed out"}

# Dependency to get current user
async def get_current_user(
    token: str = Depends(get_token),
    identity: IdentityProvider = Depends(get_identity_provider)
) -> User:
    user = identity.current_user(token)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token"
        )
    return user

@router.get("/me", response_model=User)
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    return current_user
