from pydantic import BaseModel, EmailStr


class LoginRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "username_or_email": "warehouse-lead",
                "password": "Stockline123",
            }
        }
    }

    username_or_email: str
    password: str


class TokenResponse(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "access_token": "<jwt>",
                "token_type": "bearer",
                "role": "warehouse_manager",
                "trace_id": "trace-123",
            }
        }
    }

    access_token: str
    token_type: str = "bearer"
    role: str
    trace_id: str


class OAuth2TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserResponse(BaseModel):
    id: str
    username: str
    email: EmailStr
    outlet_id: str | None = None
    role: str
    is_active: bool
    trace_id: str
