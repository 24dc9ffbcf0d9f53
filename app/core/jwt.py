"""JWT verification for bearer access tokens.

Tokens are issued elsewhere on the platform and signed with a shared
secret; this module only verifies them.
"""

from typing import Optional

import jwt

from app.core.config import settings
from app.schemas.auth import JWTClaims
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


class JWTVerifier:
    """Verifier for HS256 access tokens."""

    def __init__(
        self,
        jwt_secret: str,
        algorithm: str = "HS256",
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
    ):
        """Initialize JWT verifier.

        Args:
            jwt_secret: Shared signing secret
            algorithm: Accepted signing algorithm
            audience: Expected ``aud`` claim, if any
            issuer: Expected ``iss`` claim, if any
        """
        self.jwt_secret = jwt_secret
        self.algorithm = algorithm
        self.audience = audience or None
        self.issuer = issuer or None

    def verify_token(self, token: str) -> JWTClaims:
        """Verify and decode an access token.

        Args:
            token: JWT access token from Authorization header

        Returns:
            Decoded and validated JWT claims

        Raises:
            jwt.InvalidTokenError: If token is invalid or expired
        """
        if not self.jwt_secret:
            raise jwt.InvalidTokenError("JWT_SECRET is not configured")

        try:
            payload = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={
                    "verify_exp": True,
                    "verify_aud": self.audience is not None,
                    "require": ["sub", "exp"],
                },
            )
        except jwt.ExpiredSignatureError as e:
            LOGGER.warning(f"Token expired: {e}")
            raise jwt.InvalidTokenError("Token has expired") from e
        except jwt.InvalidSignatureError as e:
            LOGGER.warning(f"Invalid signature: {e}")
            raise jwt.InvalidTokenError("Invalid token signature") from e
        except jwt.InvalidTokenError as e:
            LOGGER.warning(f"Invalid token: {e}")
            raise

        claims = JWTClaims(**payload)
        LOGGER.debug(f"Successfully verified token for user: {claims.sub}")
        return claims


jwt_verifier = JWTVerifier(
    jwt_secret=settings.auth.jwt_secret,
    algorithm=settings.auth.jwt_algorithm,
    audience=settings.auth.jwt_audience,
    issuer=settings.auth.jwt_issuer,
)
