"""Auth schemas: token response, decoded claims, current operator."""

import uuid

from app.schemas.common import BaseSchema


class TokenResponse(BaseSchema):
    access_token: str
    token_type: str = "bearer"
    role: str
    expires_in: int  # seconds


class TokenPayload(BaseSchema):
    sub: str  # operator email
    user_id: str
    role: str


class UserMeResponse(BaseSchema):
    id: uuid.UUID
    email: str
    role: str
    is_active: bool
