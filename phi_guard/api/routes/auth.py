"""Authentication Endpoints"""

from fastapi import APIRouter, Depends, status
import structlog

from phi_guard.api.dependencies import get_auth_service, get_current_actor, request_context
from phi_guard.models.actor import (
    Actor,
    ActorPublic,
    ChangePasswordRequest,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
)
from phi_guard.models.audit import RequestContext
from phi_guard.services.auth_service import AuthService

router = APIRouter()
logger = structlog.get_logger()


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    data: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service),
    context: RequestContext = Depends(request_context),
):
    """
    Register a new healthcare provider

    New accounts must complete HIPAA training before PHI routes open up.
    """
    actor = await auth_service.register(data, context)
    return {
        "message": "User registered successfully",
        "user": actor.public(),
        "requires_training": True,
    }


@router.post("/login", response_model=TokenResponse)
async def login(
    data: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
    context: RequestContext = Depends(request_context),
):
    """
    Exchange email and password for access and refresh tokens

    Repeated failures lock the account for a fixed window.
    """
    _, tokens = await auth_service.login(data.email, data.password, context)
    return tokens


@router.post("/logout")
async def logout(
    actor: Actor = Depends(get_current_actor),
    auth_service: AuthService = Depends(get_auth_service),
    context: RequestContext = Depends(request_context),
):
    auth_service.logout(actor, context)
    logger.info("actor_logged_out", actor_id=actor.actor_id)
    return {"message": "Logout successful"}


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    data: RefreshRequest,
    auth_service: AuthService = Depends(get_auth_service),
    context: RequestContext = Depends(request_context),
):
    """Exchange a refresh token for a new access token"""
    return await auth_service.refresh(data.refresh_token, context)


@router.post("/change-password")
async def change_password(
    data: ChangePasswordRequest,
    actor: Actor = Depends(get_current_actor),
    auth_service: AuthService = Depends(get_auth_service),
    context: RequestContext = Depends(request_context),
):
    """
    Change the current actor's password

    Every token issued before the change stops working.
    """
    await auth_service.change_password(actor, data.current_password, data.new_password, context)
    return {"message": "Password changed successfully"}


@router.post("/complete-training")
async def complete_training(
    actor: Actor = Depends(get_current_actor),
    auth_service: AuthService = Depends(get_auth_service),
    context: RequestContext = Depends(request_context),
):
    updated = await auth_service.complete_training(actor, context)
    return {
        "message": "HIPAA training completed successfully",
        "user": updated.public(),
    }


@router.get("/profile", response_model=ActorPublic)
async def profile(actor: Actor = Depends(get_current_actor)):
    return actor.public()
