from fastapi import Depends, HTTPException, status, Request, Header
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError, ExpiredSignatureError
from datetime import datetime, timedelta, timezone
from app.config import settings

from applications.user.models import User

# =========================
# JWT SETTINGS
# =========================
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = settings.ACCESS_TOKEN_EXPIRE_MINUTES
REFRESH_TOKEN_EXPIRE_DAYS = settings.REFRESH_TOKEN_EXPIRE_DAYS

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login/")


# =========================
# TOKEN HELPERS
# =========================
def create_access_token(data: dict):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)


def create_refresh_token(data: dict):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS)
    to_encode.update({"exp": expire, "type": "refresh"})
    return jwt.encode(to_encode, settings.REFRESH_SECRET_KEY, algorithm=ALGORITHM)


def issue_tokens(user: User) -> dict:
    """Access and refresh tokens carrying the user's current role."""
    claims = {"sub": str(user.id), "role": user.role.value}
    return {
        "access_token": create_access_token(claims),
        "refresh_token": create_refresh_token(claims),
        "token_type": "bearer",
        "role": user.role,
    }


def _decode(token: str, key: str, token_type: str) -> dict:
    payload = jwt.decode(token, key, algorithms=[ALGORITHM])
    if payload.get("type") != token_type:
        raise JWTError(f"Expected a {token_type} token")
    return payload


# =========================
# AUTH HELPERS
# =========================
async def get_current_user(
        request: Request,
        token: str = Depends(oauth2_scheme),
        refresh_token: str = Header(default=None, alias="refresh-token")
) -> User:
    refreshed = False
    try:
        payload = _decode(token, settings.SECRET_KEY, "access")

    except ExpiredSignatureError:
        if not refresh_token:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Access token expired. Refresh token required.",
                headers={"WWW-Authenticate": "Bearer"},
            )

        try:
            payload = _decode(refresh_token, settings.REFRESH_SECRET_KEY, "refresh")
        except ExpiredSignatureError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Refresh token expired. Please log in again.",
            )
        except JWTError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid refresh token",
            )
        refreshed = True

    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid access token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await User.get_or_none(id=payload.get("sub"))
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    if not user.is_active or user.is_suspended:
        raise HTTPException(status_code=403, detail="Inactive user")

    # new tokens are built from the stored user, so role changes apply on refresh
    if refreshed:
        new_tokens = issue_tokens(user)
        request.state.new_tokens = {
            "access_token": new_tokens["access_token"],
            "refresh_token": new_tokens["refresh_token"],
        }

    return user
