from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, Request

from app.stockline.core.context import Actor
from app.stockline.core.deps import require_active_user
from app.stockline.core.error_catalog import AppError
from app.stockline.db.session import get_db
from app.stockline.repos.users import UserRepository
from app.stockline.schemas.auth import LoginRequest, OAuth2TokenResponse, TokenResponse, UserResponse
from app.stockline.services.audit import AuditEventPayload, AuditService
from app.stockline.services.auth import AuthService

router = APIRouter()


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login (JSON)",
    description="Login with username or email for JSON clients.",
)
async def login(request: Request, payload: LoginRequest, db=Depends(get_db)):
    trace_id = getattr(request.state, "trace_id", "")
    try:
        user, token = AuthService(db).login(payload.username_or_email, payload.password)
    except AppError as exc:
        candidate = UserRepository(db).get_by_username_or_email(payload.username_or_email)
        if candidate is not None:
            AuditService(db).record_event(
                AuditEventPayload(
                    actor=payload.username_or_email,
                    action="auth.login.failed",
                    entity_type="user",
                    entity_id=str(candidate.id),
                    user_id=str(candidate.id),
                    trace_id=trace_id or None,
                    metadata={"error_code": exc.error.code},
                    result="failure",
                )
            )
        raise

    actor = Actor.from_user(user, trace_id=trace_id)
    AuditService(db).record_event(
        AuditEventPayload.for_actor(actor, action="auth.login", entity_type="user", entity_id=user.id)
    )
    return TokenResponse(access_token=token, role=user.role, trace_id=trace_id)


@router.post(
    "/token",
    response_model=OAuth2TokenResponse,
    summary="OAuth2 Token (Swagger/Auth)",
    description="OAuth2 password flow using form-encoded username/password.",
)
async def oauth2_token(request: Request, db=Depends(get_db)):
    raw_body = (await request.body()).decode()
    form_data = parse_qs(raw_body)
    username = (form_data.get("username") or [""])[0]
    password = (form_data.get("password") or [""])[0]
    _, token = AuthService(db).login(username, password)
    return OAuth2TokenResponse(access_token=token)


@router.get("/me", response_model=UserResponse)
def me(request: Request, current_user=Depends(require_active_user)):
    return UserResponse(
        id=str(current_user.id),
        username=current_user.username,
        email=current_user.email,
        outlet_id=str(current_user.outlet_id) if current_user.outlet_id else None,
        role=current_user.role,
        is_active=current_user.is_active,
        trace_id=getattr(request.state, "trace_id", ""),
    )
