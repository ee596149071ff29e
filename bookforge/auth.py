from typing import Optional

from .pydantic_compat import BaseModel


class AuthContext(BaseModel):
    """
    Identity of the signed-in user, supplied by the authentication provider.

    bookforge never reads a global "current user": every service and session
    that writes receives one of these explicitly.
    """

    uid: str
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    email: Optional[str] = None
    email_verified: bool = False
