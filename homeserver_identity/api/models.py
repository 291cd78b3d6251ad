# homeserver_identity/api/models.py
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from ..identity.models import UserIdentifier


class RegistrationKind(str, Enum):
    USER = "user"
    GUEST = "guest"


class AvailableResponse(BaseModel):
    available: bool = True


class RegisterRequest(BaseModel):
    """Body of POST /register. Interactive auth stages are not supported."""
    username: Optional[str] = Field(default=None, description="Desired localpart.")
    password: Optional[str] = None
    device_id: Optional[str] = Field(
        default=None, description="Device to associate with the new access token; generated if absent."
    )
    initial_device_display_name: Optional[str] = None
    inhibit_login: bool = False


class RegisterResponse(BaseModel):
    user_id: str
    access_token: Optional[str] = None
    device_id: Optional[str] = None


class LoginFlow(BaseModel):
    type: str


class LoginFlowsResponse(BaseModel):
    flows: List[LoginFlow]


class LoginRequest(BaseModel):
    type: Literal["m.login.password"] = "m.login.password"
    identifier: Optional[UserIdentifier] = None
    # Deprecated top-level user field, still sent by older clients
    user: Optional[str] = None
    password: str
    device_id: Optional[str] = None
    initial_device_display_name: Optional[str] = None


class LoginResponse(BaseModel):
    user_id: str
    access_token: str
    device_id: str


class WhoamiResponse(BaseModel):
    user_id: str
    device_id: Optional[str] = None


class DisplayNameResponse(BaseModel):
    displayname: str


class DisplayNameUpdate(BaseModel):
    displayname: str = Field(min_length=1, max_length=256)
