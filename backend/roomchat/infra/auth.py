"""Authentication helpers for FastAPI endpoints and WebSocket upgrades.

Identity is established by the account service, which issues an HS256 JWT
and stores it in the `jwt` cookie. Bearer headers are accepted as an
equivalent for non-browser clients. Dev headers are only respected in
development.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from fastapi import Depends, HTTPException, Request, WebSocket, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from roomchat.infra import jwt as jwt_helper
from roomchat.settings import settings


class Unauthenticated(Exception):
	"""Raised when no valid identity can be resolved for a caller."""

	def __init__(self, reason: str = "invalid_token") -> None:
		super().__init__(reason)
		self.reason = reason


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	name: str
	roles: Tuple[str, ...] = ()

	def has_role(self, role: str) -> bool:
		return role in self.roles


_bearer_scheme = HTTPBearer(auto_error=False)


def _parse_roles(claim: object) -> Tuple[str, ...]:
	if isinstance(claim, (list, tuple)):
		return tuple(str(r).strip() for r in claim if str(r).strip())
	if isinstance(claim, str):
		return tuple(part.strip() for part in claim.split(",") if part.strip())
	return ()


def verify_access_jwt(token: str) -> AuthenticatedUser:
	"""Decode and validate an access JWT and return an AuthenticatedUser.

	Requirements:
	- issuer="roomchat-api", audience="roomchat-fe"
	- required claims: sub, name, exp, iat
	- roles can be list[str] or comma-separated string.
	"""
	try:
		payload = jwt_helper.decode_access(token)
	except Exception:
		# Normalise all decode failures to invalid_token
		raise Unauthenticated("invalid_token") from None

	sub = str(payload.get("sub") or "").strip()
	name = str(payload.get("name") or "").strip()
	if not sub or not name:
		raise Unauthenticated("invalid_token")
	roles = _parse_roles(payload.get("roles") or payload.get("role"))
	return AuthenticatedUser(id=sub, name=name, roles=roles)


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
	if authorization and authorization.lower().startswith("bearer "):
		return authorization.split(" ", 1)[1].strip() or None
	return None


def resolve_identity(headers: Mapping[str, str], cookies: Mapping[str, str]) -> AuthenticatedUser:
	"""Resolve the caller from the auth cookie, a bearer header, or dev headers."""
	token = cookies.get(settings.auth_cookie_name) or _bearer_token(headers.get("authorization"))
	if token:
		return verify_access_jwt(token)

	# In dev only, allow X-User-* fallback for local tools
	if settings.is_dev():
		user_id = headers.get("x-user-id")
		if user_id:
			name = headers.get("x-user-name") or user_id
			return AuthenticatedUser(id=user_id, name=name, roles=_parse_roles(headers.get("x-user-roles")))

	raise Unauthenticated("missing_token")


async def authenticate_websocket(websocket: WebSocket) -> AuthenticatedUser:
	"""Identity provider for WebSocket upgrades. Raises Unauthenticated."""
	return resolve_identity(websocket.headers, websocket.cookies)


async def get_current_user(
	request: Request,
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the authenticated user for HTTP routes.

	A bearer JWT wins over the cookie; dev headers are a last resort.
	"""
	try:
		if credentials and credentials.scheme.lower() == "bearer":
			return verify_access_jwt(credentials.credentials)
		return resolve_identity(request.headers, request.cookies)
	except Unauthenticated:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token") from None


async def get_admin_user(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
	if user.has_role("admin"):
		return user
	raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="insufficient_role")
