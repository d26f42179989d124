# app/auth.py
"""
Identity provider client.

The hosted auth service issues HS256-signed JWTs whose `sub` claim is the
user id and whose audience is "authenticated". Resolving a credential means
verifying the signature, expiry and audience, then returning `sub`.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from app.errors import Unauthenticated


class IdentityProvider:
    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        audience: str = "authenticated",
        expire_minutes: int = 60 * 24 * 7,
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.audience = audience
        self.expire_minutes = expire_minutes

    def issue_token(self, owner_id: str, expires_delta: Optional[timedelta] = None) -> str:
        """Sign a token for `owner_id` (local development and tests)."""
        expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=self.expire_minutes))
        claims = {"sub": owner_id, "aud": self.audience, "exp": expire}
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def resolve(self, credential: Optional[str]) -> str:
        """Return the owner id for a bearer credential, or raise Unauthenticated."""
        if not credential:
            raise Unauthenticated("Missing bearer token")
        try:
            payload = jwt.decode(
                credential,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
            )
        except JWTError as exc:
            raise Unauthenticated("Could not validate credentials") from exc

        owner_id = payload.get("sub")
        if not owner_id:
            raise Unauthenticated("Token has no subject")
        return str(owner_id)
