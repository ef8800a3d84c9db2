import logging

from fastapi import APIRouter, Depends, HTTPException, status, Form, Request
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr
from tortoise import timezone

from applications.communication.notifications import NotificationSetting
from applications.user.models import User, UserRole
from app.token import get_current_user, issue_tokens

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str
    role: UserRole


@router.post("/login/", response_model=TokenResponse)
async def login(form_data: OAuth2PasswordRequestForm = Depends()):
    user = await User.get_or_none(email=form_data.username.strip().lower())
    if not user or not user.verify_password(form_data.password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active or user.is_suspended:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")

    user.last_login_at = timezone.now()
    await user.save(update_fields=["last_login_at"])
    return issue_tokens(user)


@router.post("/register/", status_code=status.HTTP_201_CREATED, response_model=TokenResponse)
async def register_user(
    request: Request,
    name: str = Form(...),
    email: EmailStr = Form(...),
    password: str = Form(..., min_length=6),
    role: UserRole = Form(UserRole.TESTER),
):
    if role == UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Admin registration is not allowed")

    email = email.lower()
    if await User.exists(email=email):
        raise HTTPException(status_code=400, detail="Email already registered")

    user = await User.create(
        name=name,
        email=email,
        password=password,  # hashed in User.save()
        role=role,
        signup_ip=request.client.host if request.client else None,
    )
    await NotificationSetting.create(user=user)
    logger.info("Registered %s %s", role.value, user.id)
    return issue_tokens(user)


@router.get("/verify-token/")
async def verify_token(request: Request, user: User = Depends(get_current_user)):
    response_data = {
        "status": "success",
        "id": user.id,
        "name": user.name,
        "role": user.role,
        "email": user.email,
        "is_active": user.is_active,
        "flagged": user.flagged,
    }

    if hasattr(request.state, "new_tokens"):
        response_data["new_tokens"] = request.state.new_tokens

    return response_data


@router.post("/reset_password/")
async def reset_password(
    user: User = Depends(get_current_user),
    old_password: str = Form(...),
    password: str = Form(..., min_length=6),
):
    if not user.verify_password(old_password):
        raise HTTPException(status_code=400, detail="Invalid Old Password")
    user.password = password
    await user.save()

    return {"message": "Password reset successfully", **issue_tokens(user)}
