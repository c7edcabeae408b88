"""
Authentication API endpoints.

Cookie sessions: login sets an HTTP-only session cookie that the
payment routes resolve to the current user.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, EmailStr

from auth.middleware import (
    clear_session_cookie,
    get_session_id,
    get_required_user,
    set_session_cookie,
)
from auth.models import User
from auth.service import (
    InvalidCredentialsError,
    UserExistsError,
    WeakPasswordError,
    authenticate_user,
    create_session,
    create_user,
    invalidate_session,
)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


def _start_session(request: Request, response: Response, user: User) -> None:
    session = create_session(
        user.id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    secure = getattr(request.app.state, "secure_cookies", False)
    set_session_cookie(response, session.id, secure=secure)


@router.post("/register", status_code=201)
def register(body: RegisterRequest, request: Request, response: Response):
    """Register and log in."""
    try:
        user = create_user(body.email, body.password)
    except UserExistsError:
        raise HTTPException(status_code=409, detail="Email already registered")
    except WeakPasswordError as e:
        raise HTTPException(status_code=400, detail=str(e))

    _start_session(request, response, user)
    return {"status": 201, "user": user.to_dict()}


@router.post("/login")
def login(body: LoginRequest, request: Request, response: Response):
    try:
        user = authenticate_user(body.email, body.password)
    except InvalidCredentialsError as e:
        raise HTTPException(status_code=401, detail=str(e))

    _start_session(request, response, user)
    return {"status": 200, "user": user.to_dict()}


@router.post("/logout")
def logout(request: Request, response: Response):
    session_id = get_session_id(request)
    if session_id:
        invalidate_session(session_id)
    clear_session_cookie(response)
    return {"status": 200, "message": "Logged out"}


@router.get("/me")
def me(user: User = Depends(get_required_user)):
    return {"status": 200, "user": user.to_dict()}
