"""
User registration and login endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import BankingSystem, get_banking_system
from .schemas import CreateUserRequest, LoginUserRequest


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_user(
    request: CreateUserRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Register a new user"""
    user = system.user_manager.create_user(
        username=request.username,
        password=request.password,
        full_name=request.full_name,
        email=request.email
    )
    return user.to_public_dict()


@router.post("/login")
def login_user(
    request: LoginUserRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Authenticate a user and return an access token"""
    result = system.user_manager.login(request.username, request.password)
    return {
        "access_token": result.access_token,
        "token_type": "bearer",
        "access_token_expires_at": result.payload.expired_at.isoformat(),
        "user": result.user.to_public_dict()
    }
