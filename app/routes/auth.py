"""
Authentication routes.

Real sign-in happens in front of this service; the login endpoint here is
the demo flow: any username is accepted and provisioned on first use.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_user_from_token
from app.logging_config import get_logger
from app.models.user import User
from app.services.jwt_service import JWTService
from app.services.user_service import UserService

router = APIRouter(prefix="/auth", tags=["Authentication"])

log = get_logger(component="auth")


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=255)
    email: str | None = None
    full_name: str | None = None
    company: str | None = None


def user_to_response(user: User) -> dict:
    return {
        "user_id": user.id,
        "username": user.username,
        "email": user.email,
        "full_name": user.full_name,
        "company": user.company,
        "plan": user.plan.value,
        "credits": user.credits,
        "unlimited_credits": user.has_unlimited_credits,
    }


@router.post("/login")
async def login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Log in by username.

    This endpoint:
    1. Looks the user up by username
    2. Creates the account with the free-plan credits if it does not exist
    3. Returns a JWT in the JSON body
    """
    user_service = UserService(db)

    user = await user_service.get_by_username(request.username)
    created = user is None
    if created:
        user = await user_service.create(
            username=request.username,
            email=request.email,
            full_name=request.full_name,
            company=request.company
        )

    access_token = JWTService().create_token(user_id=user.id, username=user.username)
    log.info("user_logged_in", user_id=user.id, created=created)

    return {
        "status": "success",
        "message": "User created successfully" if created else "User logged in successfully",
        "access_token": access_token,
        "token_type": "bearer",
        **user_to_response(user)
    }


@router.post("/logout")
async def logout():
    """
    Logout endpoint.

    Tokens are stateless; the client discards its copy.
    """
    return {"status": "success", "message": "Logged out"}


@router.get("/me")
async def get_me(current_user: User = Depends(get_user_from_token)):
    """Get current user info."""
    return user_to_response(current_user)
