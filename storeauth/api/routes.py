from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Header, Request, Response, UploadFile

from storeauth.api.schemas import (
    AdminUserRequest,
    Envelope,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    UpdateUserRequest,
    UserListResponse,
    UserResponse,
    _validate_email,
)
from storeauth.logging import get_logger
from storeauth.service.auth import Principal
from storeauth.service.errors import ForbiddenError, NotFoundError, ValidationError
from storeauth.service.roles import USER_DELETE, USER_UPDATE
from storeauth.service.runtime import get_runtime
from storeauth.storage.models import User

logger = get_logger(__name__)

router = APIRouter(prefix="/user")


async def get_principal(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> Principal:
    runtime = get_runtime()
    presented = request.headers.get(runtime.settings.token_header_name) or authorization
    return runtime.auth.authenticate(presented)


def require_authority(authority: str):
    async def dependency(principal: Principal = Depends(get_principal)) -> Principal:
        return get_runtime().auth.require_authority(principal, authority)

    return dependency


def _user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        user_id=user.user_id,
        first_name=user.first_name,
        last_name=user.last_name,
        username=user.username,
        email=user.email,
        profile_image_url=user.profile_image_url,
        last_login_date=user.last_login_date,
        last_login_date_display=user.last_login_date_display,
        join_date=user.join_date,
        role=user.role,
        authorities=sorted(user.authorities),
        is_active=user.is_active,
        is_not_locked=user.is_not_locked,
    )


@router.post("/register", response_model=Envelope, status_code=201, tags=["user"])
async def register(body: RegisterRequest):
    """Create an account with the default role; the password is sent out of band."""
    runtime = get_runtime()
    if not runtime.settings.allow_signup:
        raise ForbiddenError("signup disabled")
    user = runtime.users.register(
        body.first_name, body.last_name, body.username, body.email
    )
    return Envelope(status="ok", data=_user_to_response(user))


@router.post("/login", response_model=Envelope, tags=["user"])
async def login(body: LoginRequest, response: Response):
    """Verify credentials and return the token in the configured header."""
    runtime = get_runtime()
    result = runtime.auth.login(body.username, body.password)
    response.headers[result.token.header_name] = result.token.token
    return Envelope(status="ok", data=_user_to_response(result.user))


@router.post("/add", response_model=Envelope, status_code=201, tags=["user"])
async def add_user(
    body: AdminUserRequest, principal: Principal = Depends(get_principal)
):
    runtime = get_runtime()
    user = runtime.users.add_new_user(
        body.first_name,
        body.last_name,
        body.username,
        body.email,
        body.role,
        body.is_not_locked,
        body.is_active,
    )
    logger.info("admin_user_added", actor=principal.username, username=user.username)
    return Envelope(status="ok", data=_user_to_response(user))


@router.post("/update", response_model=Envelope, tags=["user"])
async def update_user(
    body: UpdateUserRequest, principal: Principal = Depends(get_principal)
):
    runtime = get_runtime()
    user = runtime.users.update_user(
        body.current_username,
        body.first_name,
        body.last_name,
        body.username,
        body.email,
        body.role,
        body.is_not_locked,
        body.is_active,
    )
    return Envelope(status="ok", data=_user_to_response(user))


@router.get("/find/{username}", response_model=Envelope, tags=["user"])
async def find_user(username: str, principal: Principal = Depends(get_principal)):
    user = get_runtime().users.find_user_by_username(username)
    if not user:
        raise NotFoundError("user not found", detail={"username": username})
    return Envelope(status="ok", data=_user_to_response(user))


@router.get("/list", response_model=Envelope, tags=["user"])
async def list_users(principal: Principal = Depends(get_principal)):
    users = get_runtime().users.list_users()
    return Envelope(
        status="ok", data=UserListResponse(items=[_user_to_response(u) for u in users])
    )


@router.get("/reset-password/{email}", response_model=Envelope, tags=["user"])
async def reset_password(email: str):
    try:
        normalized = _validate_email(email)
    except ValueError as exc:
        raise ValidationError(str(exc), detail={"email": email}) from exc
    get_runtime().users.reset_password(normalized)
    return Envelope(
        status="ok",
        data=MessageResponse(
            message=f"Password reset successful. New password sent to email: {normalized}"
        ),
    )


@router.post("/update-profile-image", response_model=Envelope, tags=["user"])
async def update_profile_image(
    username: str = Form(..., max_length=64),
    profile_image: UploadFile = File(...),
    principal: Principal = Depends(get_principal),
):
    """Replace the profile image; changing someone else's needs ``user:update``."""
    runtime = get_runtime()
    username = username.strip()
    if username != principal.username:
        runtime.auth.require_authority(principal, USER_UPDATE)
    content = await profile_image.read()
    user = runtime.users.update_profile_image(username, content)
    return Envelope(status="ok", data=_user_to_response(user))


@router.delete("/delete/{id}", response_model=Envelope, tags=["user"])
async def delete_user(id: int, principal: Principal = Depends(require_authority(USER_DELETE))):
    get_runtime().users.delete_user(id)
    return Envelope(status="ok", data=MessageResponse(message="User deleted successfully"))
