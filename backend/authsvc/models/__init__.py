from authsvc.models.user import User
from authsvc.models.client import Client
from authsvc.models.refresh_token import RefreshToken

__all__ = [
    "User",
    "Client",
    "RefreshToken",
]
