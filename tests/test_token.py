from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi import Depends, FastAPI, Request
from jose import jwt

from app.config import settings
from app.token import ALGORITHM, get_current_user, issue_tokens
from applications.user.models import User, UserRole


@pytest.fixture
async def client():
    app = FastAPI()

    @app.get("/me/")
    async def me(request: Request, user: User = Depends(get_current_user)):
        return {"id": user.id, "new_tokens": getattr(request.state, "new_tokens", None)}

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def expired_access_token(user: User) -> str:
    claims = {
        "sub": user.id,
        "role": user.role.value,
        "type": "access",
        "exp": datetime.now(timezone.utc) - timedelta(minutes=1),
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=ALGORITHM)


async def test_access_token_resolves_the_user(client, make_user):
    user = await make_user()
    tokens = issue_tokens(user)

    response = await client.get("/me/", headers={"Authorization": f"Bearer {tokens['access_token']}"})

    assert response.status_code == 200
    assert response.json() == {"id": user.id, "new_tokens": None}


async def test_refresh_issues_tokens_from_the_stored_role(client, make_user):
    user = await make_user(UserRole.TESTER)
    refresh_token = issue_tokens(user)["refresh_token"]
    await User.filter(id=user.id).update(role=UserRole.DEVELOPER)

    response = await client.get("/me/", headers={
        "Authorization": f"Bearer {expired_access_token(user)}",
        "refresh-token": refresh_token,
    })

    assert response.status_code == 200
    new_access = response.json()["new_tokens"]["access_token"]
    claims = jwt.decode(new_access, settings.SECRET_KEY, algorithms=[ALGORITHM])
    assert (claims["sub"], claims["role"], claims["type"]) == (user.id, "DEVELOPER", "access")


async def test_expired_access_without_refresh_is_rejected(client, make_user):
    user = await make_user()
    response = await client.get("/me/", headers={"Authorization": f"Bearer {expired_access_token(user)}"})
    assert response.status_code == 401


async def test_access_token_is_not_accepted_as_refresh(client, make_user, monkeypatch):
    monkeypatch.setattr(settings, "REFRESH_SECRET_KEY", settings.SECRET_KEY)
    user = await make_user()

    response = await client.get("/me/", headers={
        "Authorization": f"Bearer {expired_access_token(user)}",
        "refresh-token": issue_tokens(user)["access_token"],
    })

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid refresh token"


async def test_suspended_user_is_refused(client, make_user):
    user = await make_user(is_suspended=True)
    tokens = issue_tokens(user)

    response = await client.get("/me/", headers={"Authorization": f"Bearer {tokens['access_token']}"})

    assert response.status_code == 403
