from fastapi import APIRouter, Depends, Request, Response
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session

from ..auth.middleware import require_auth
from ..auth.sessions import AuthUser
from ..cache.cache_service import CacheService
from ..config import Settings
from ..db import get_db
from ..repositories import users_repo
from ..utils.schemas import ChangePasswordRequest, ProfileUpdate, SignInRequest, SignUpRequest
from .deps import get_cache, get_settings
from .errors import ok

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/sign-up", status_code=201)
def sign_up(
    req: SignUpRequest,
    s: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = users_repo.register_user(s, settings, req.name, req.email, req.password, req.role)
    return ok({"user": users_repo.public_user(user)}, "User registered successfully")


@router.post("/sign-in")
def sign_in(
    req: SignInRequest,
    request: Request,
    response: Response,
    s: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user, session = users_repo.login(
        s,
        settings,
        req.email,
        req.password,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    response.set_cookie(
        settings.session_cookie_name,
        session.token,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    return ok(
        {
            "user": users_repo.public_user(user),
            "token": session.token,
            "expiresAt": session.expires_at.isoformat(),
        }
    )


@router.post("/sign-out")
async def sign_out(
    request: Request,
    response: Response,
    user: AuthUser = Depends(require_auth),
    s: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    cache: CacheService = Depends(get_cache),
):
    await run_in_threadpool(users_repo.logout, s, request.state.session_id)
    await cache.invalidate_user_data(user.id)
    response.delete_cookie(settings.session_cookie_name)
    return ok(None, "Signed out")


@router.get("/me")
async def me(user: AuthUser = Depends(require_auth)):
    return ok({"user": user.model_dump(mode="json")})


@router.get("/profile")
def get_profile(user: AuthUser = Depends(require_auth), s: Session = Depends(get_db)):
    return ok({"user": users_repo.public_user(users_repo.get_user(s, user.id))})


@router.put("/profile")
async def put_profile(
    req: ProfileUpdate,
    user: AuthUser = Depends(require_auth),
    s: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    updated = await run_in_threadpool(
        users_repo.update_profile, s, user.id, req.name, req.email, req.image
    )
    # the cached session profile carries name and email
    await cache.invalidate_user_session(user.id)
    return ok({"user": users_repo.public_user(updated)}, "Profile updated")


@router.post("/change-password")
def change_password(
    req: ChangePasswordRequest,
    request: Request,
    user: AuthUser = Depends(require_auth),
    s: Session = Depends(get_db),
):
    revoked = users_repo.change_password(
        s, user.id, req.current_password, req.new_password, request.state.session_id
    )
    return ok({"revokedSessions": revoked}, "Password changed successfully")
