from fastapi import Depends, Request
from jose import JWTError
from pydantic import ValidationError as PydanticValidationError

from app.stockline.core.context import Actor
from app.stockline.core.error_catalog import AppError, ErrorCatalog
from app.stockline.core.security import TokenData, decode_token, oauth2_scheme
from app.stockline.db.session import get_db
from app.stockline.repos.users import UserRepository


def get_current_token_data(token: str = Depends(oauth2_scheme)) -> TokenData:
    try:
        payload = decode_token(token)
        return TokenData(**payload)
    except (JWTError, PydanticValidationError, TypeError) as exc:
        raise AppError(ErrorCatalog.INVALID_TOKEN) from exc


def get_current_user(token_data: TokenData = Depends(get_current_token_data), db=Depends(get_db)):
    repo = UserRepository(db)
    user = repo.get_by_id(token_data.sub)
    if user is None:
        raise AppError(ErrorCatalog.INVALID_TOKEN)
    return user


def require_active_user(request: Request, user=Depends(get_current_user)):
    if not user.is_active:
        raise AppError(ErrorCatalog.USER_INACTIVE)
    request.state.user_id = str(user.id)
    return user


def require_actor(request: Request, user=Depends(require_active_user)) -> Actor:
    return Actor.from_user(user, trace_id=getattr(request.state, "trace_id", ""))


__all__ = [
    "get_current_token_data",
    "get_current_user",
    "require_active_user",
    "require_actor",
]
