from dataclasses import dataclass
from typing import Callable, Optional
import jwt
import logging

from ipc_ledger import config

logger = logging.getLogger(__name__)

# Backend UserType enum values (roleType / legacy roleid claims)
ROLE_ID_MAP = {
    0: "GeneralManager",
    1: "RegionalOperationsManager",
    2: "OperationsManager",
    3: "ContractsManager",
    4: "QuantitySurveyor",
    5: "Accountant",
    6: "Admin",
    7: "ProjectManager",
}

ROLE_CLAIM_KEYS = (
    "role",
    "http://schemas.microsoft.com/ws/2008/06/identity/claims/role",
)


class AuthenticationError(Exception):
    """Raised when no usable bearer token is available"""
    pass


@dataclass(frozen=True)
class AuthenticatedUser:
    user_id: str
    name: str
    role: Optional[str]
    email: Optional[str] = None


def decode_token(token: str) -> dict:
    """
    Decode bearer token claims.
    The signature is verified only when JWT_SECRET_KEY is configured; the
    backend remains the authority for every request either way.
    """
    try:
        if config.JWT_SECRET_KEY:
            return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")


def _role_from_claims(claims: dict) -> Optional[str]:
    for key in ("roleType", "roleid"):
        if key in claims:
            try:
                return ROLE_ID_MAP.get(int(claims[key]))
            except (TypeError, ValueError):
                logger.warning(f"Unrecognised {key} claim: {claims[key]!r}")
    for key in ROLE_CLAIM_KEYS:
        value = claims.get(key)
        if isinstance(value, list):
            value = value[0] if value else None
        if value:
            return str(value)
    return None


def user_from_token(token: str) -> AuthenticatedUser:
    claims = decode_token(token)
    return AuthenticatedUser(
        user_id=str(claims.get("sub") or claims.get("nameid") or claims.get("userId") or ""),
        name=str(claims.get("name") or claims.get("unique_name") or ""),
        role=_role_from_claims(claims),
        email=claims.get("email"),
    )


class TokenProvider:
    """Supplies the current bearer token; raises when signed out."""

    def __init__(self, get_token: Callable[[], Optional[str]]):
        self._get_token = get_token

    def get_token(self) -> str:
        token = self._get_token()
        if not token:
            raise AuthenticationError("Authentication required")
        return token

    def current_user(self) -> AuthenticatedUser:
        return user_from_token(self.get_token())

    @classmethod
    def static(cls, token: Optional[str]) -> "TokenProvider":
        return cls(lambda: token)
