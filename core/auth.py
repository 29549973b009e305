"""
Authentication strategies.

Exactly one `AuthStrategy` is selected at startup from configuration and kept
for the life of the process. Route handlers never look at which one is active;
they depend on `resolve_identity` (through `api.dependencies`) and nothing
else.

Key Components:
- `AuthStrategy`: The capability every strategy offers: `login`, `callback`,
  `logout`, `resolve_identity`, plus `register_routes` to mount its endpoints.
- `OIDCStrategy`: OpenID Connect authorization-code flow with PKCE. The
  discovery document is cached for an hour, the ID token is verified with
  PyJWT against the issuer's JWKS, the user is upserted from the claims, and
  an expired session is renewed with the refresh token.
- `GoogleOAuthStrategy`: OAuth2 authorization-code flow against Google, with
  the profile read from the userinfo endpoint.
- `EmailSessionStrategy`: No external provider. ``/api/login`` answers 501 and
  identity comes only from email sessions.
- `PasswordManager`: bcrypt hashing for accounts created through signup.
- `select_auth_strategy`: The startup-time branch.

All strategies store the authenticated user id under ``session["user_id"]``,
so email/OTP sessions resolve under every strategy.

The email OTP endpoints accept any code. That is a placeholder for a real
verification provider and is logged as a security warning at startup and on
every verification (see `OTP_PLACEHOLDER_WARNING`).
"""

import asyncio
import base64
import hashlib
import secrets
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import aiohttp
import bcrypt
import jwt
from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse, Response

from .config import Settings
from .exceptions import (
    AuthenticationError,
    FeatureNotConfiguredError,
    ServiceUnavailableError,
    ValidationError,
)
from .logging_config import get_logger
from .models import UserUpsert

logger = get_logger("core.auth")

OTP_PLACEHOLDER_WARNING = (
    "Email OTP verification accepts any code. This is a placeholder, not a "
    "security control; wire a verification provider before production use."
)

DISCOVERY_TTL_SECONDS = 3600
OIDC_SCOPE = "openid email profile offline_access"

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"


class PasswordManager:
    """Password hashing and validation"""

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash password using bcrypt"""
        PasswordManager.validate_password_strength(password)

        salt = bcrypt.gensalt()
        hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
        return hashed.decode("utf-8")

    @staticmethod
    def verify_password(password: str, hashed: str) -> bool:
        """Verify password against hash"""
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError as e:
            logger.error(f"Password verification error: {e}")
            return False

    @staticmethod
    def validate_password_strength(password: str) -> bool:
        if len(password) < 8:
            raise ValidationError(
                "password", "***", "Password must be at least 8 characters long"
            )
        # bcrypt only looks at the first 72 bytes
        if len(password.encode("utf-8")) > 72:
            raise ValidationError(
                "password", "***", "Password must be no more than 72 bytes long"
            )
        return True

HTTP_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)
OIDC_ERRORS = HTTP_ERRORS + (KeyError, jwt.PyJWTError, ServiceUnavailableError)

# Accepted ID token signatures; the token header never chooses the algorithm
ID_TOKEN_ALGORITHMS = ["RS256"]


def pkce_pair() -> tuple:
    verifier = secrets.token_urlsafe(48)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


class AuthStrategy(ABC):
    """Base class for the authentication strategies"""

    name = "base"

    def __init__(
        self,
        settings: Settings,
        repository,
        http_session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
    ):
        self.settings = settings
        self.repository = repository
        self.http_session_factory = http_session_factory or (
            lambda: aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10))
        )

    async def _get_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        async with self.http_session_factory() as session:
            async with session.get(url, headers=headers) as response:
                response.raise_for_status()
                return await response.json(content_type=None)

    async def _post_form(self, url: str, data: Dict[str, Any]) -> Dict[str, Any]:
        async with self.http_session_factory() as session:
            async with session.post(url, data=data) as response:
                response.raise_for_status()
                return await response.json(content_type=None)

    @abstractmethod
    async def login(self, request: Request) -> Response:
        ...

    @abstractmethod
    async def callback(self, request: Request) -> Response:
        ...

    async def logout(self, request: Request) -> Response:
        request.session.clear()
        return RedirectResponse("/", status_code=302)

    async def resolve_identity(self, request: Request) -> Optional[str]:
        """User id of the caller, or None when the request is anonymous"""
        return request.session.get("user_id")

    def register_routes(self, router: APIRouter):
        router.add_api_route("/login", self.login, methods=["GET"], include_in_schema=False)
        router.add_api_route("/logout", self.logout, methods=["GET"], include_in_schema=False)

    def describe(self) -> Dict[str, Any]:
        return {"strategy": self.name}


class EmailSessionStrategy(AuthStrategy):
    """Deployment without an identity provider; only email sessions exist"""

    name = "email"

    async def login(self, request: Request) -> Response:
        raise FeatureNotConfiguredError(
            "oauth",
            "OAuth not configured. Please use email/OTP authentication or set "
            "GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET environment variables.",
        )

    async def callback(self, request: Request) -> Response:
        return await self.login(request)


class GoogleOAuthStrategy(AuthStrategy):
    """OAuth2 authorization-code flow against Google"""

    name = "google"

    async def login(self, request: Request) -> Response:
        state = secrets.token_urlsafe(16)
        request.session["oauth_state"] = state
        params = {
            "client_id": self.settings.google_client_id,
            "redirect_uri": self.settings.resolved_google_callback_url(),
            "response_type": "code",
            "scope": "openid profile email",
            "state": state,
        }
        return RedirectResponse(f"{GOOGLE_AUTH_URL}?{urlencode(params)}", status_code=302)

    async def callback(self, request: Request) -> Response:
        expected_state = request.session.pop("oauth_state", None)
        code = request.query_params.get("code")
        if not code or not expected_state or request.query_params.get("state") != expected_state:
            logger.warning("Google OAuth callback rejected: missing code or state mismatch")
            return RedirectResponse("/", status_code=302)

        try:
            profile = await self._fetch_profile(code)
        except HTTP_ERRORS + (KeyError,) as e:
            logger.error(f"Google OAuth exchange failed: {e}")
            return RedirectResponse("/", status_code=302)

        user = await self.repository.upsert_user(
            UserUpsert(
                id=profile["sub"],
                email=profile.get("email"),
                first_name=profile.get("given_name"),
                last_name=profile.get("family_name"),
                profile_image_url=profile.get("picture"),
                auth_provider="google",
                oauth_id=profile["sub"],
            )
        )
        request.session["user_id"] = user.id
        logger.info(f"Google login for user {user.id}")
        return RedirectResponse("/", status_code=302)

    async def _fetch_profile(self, code: str) -> Dict[str, Any]:
        tokens = await self._post_form(
            GOOGLE_TOKEN_URL,
            {
                "grant_type": "authorization_code",
                "code": code,
                "client_id": self.settings.google_client_id,
                "client_secret": self.settings.google_client_secret,
                "redirect_uri": self.settings.resolved_google_callback_url(),
            },
        )
        return await self._get_json(
            GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {tokens['access_token']}"},
        )

    def register_routes(self, router: APIRouter):
        router.add_api_route(
            "/auth/google", self.login, methods=["GET"], include_in_schema=False
        )
        router.add_api_route(
            "/auth/google/callback", self.callback, methods=["GET"], include_in_schema=False
        )
        router.add_api_route(
            "/login", self.legacy_login, methods=["GET"], include_in_schema=False
        )
        router.add_api_route("/logout", self.logout, methods=["GET"], include_in_schema=False)

    async def legacy_login(self) -> Response:
        return RedirectResponse("/api/auth/google", status_code=302)


class OIDCStrategy(AuthStrategy):
    """OpenID Connect authorization-code flow with PKCE and token refresh"""

    name = "oidc"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._discovery: Optional[Dict[str, Any]] = None
        self._discovered_at = 0.0

    async def discover(self) -> Dict[str, Any]:
        """Fetch the provider's discovery document, memoized for an hour"""
        now = time.monotonic()
        if self._discovery is not None and now - self._discovered_at < DISCOVERY_TTL_SECONDS:
            return self._discovery

        url = self.settings.issuer_url.rstrip("/") + "/.well-known/openid-configuration"
        try:
            self._discovery = await self._get_json(url)
        except HTTP_ERRORS as e:
            logger.error(f"OIDC discovery failed for {url}: {e}")
            raise ServiceUnavailableError("oidc", "discovery failed") from e

        self._discovered_at = now
        logger.info(f"OIDC discovery refreshed from {url}")
        return self._discovery

    def redirect_uri(self, request: Request) -> str:
        hostname = request.url.hostname
        domain = hostname if hostname in self.settings.replit_domains else self.settings.replit_domains[0]
        return f"https://{domain}/api/callback"

    async def login(self, request: Request) -> Response:
        config = await self.discover()
        state = secrets.token_urlsafe(16)
        verifier, challenge = pkce_pair()
        redirect_uri = self.redirect_uri(request)
        request.session["oauth"] = {
            "state": state,
            "code_verifier": verifier,
            "redirect_uri": redirect_uri,
        }
        params = {
            "response_type": "code",
            "client_id": self.settings.repl_id,
            "redirect_uri": redirect_uri,
            "scope": OIDC_SCOPE,
            "state": state,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
            "prompt": "login consent",
        }
        return RedirectResponse(
            f"{config['authorization_endpoint']}?{urlencode(params)}", status_code=302
        )

    async def callback(self, request: Request) -> Response:
        pending = request.session.pop("oauth", None)
        code = request.query_params.get("code")
        if not pending or not code or request.query_params.get("state") != pending.get("state"):
            logger.warning("OIDC callback rejected: missing code or state mismatch")
            return RedirectResponse("/api/login", status_code=302)

        try:
            config = await self.discover()
            tokens = await self._token_request(
                config,
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": pending["redirect_uri"],
                    "client_id": self.settings.repl_id,
                    "code_verifier": pending["code_verifier"],
                },
            )
            claims = await self.verify_id_token(config, tokens["id_token"])
        except OIDC_ERRORS as e:
            logger.error(f"OIDC login failed: {e}")
            return RedirectResponse("/api/login", status_code=302)

        user = await self.repository.upsert_user(
            UserUpsert(
                id=claims["sub"],
                email=claims.get("email"),
                first_name=claims.get("first_name"),
                last_name=claims.get("last_name"),
                profile_image_url=claims.get("profile_image_url"),
                auth_provider="oidc",
            )
        )
        request.session["user_id"] = user.id
        request.session["oidc"] = {
            "expires_at": claims.get("exp"),
            "refresh_token": tokens.get("refresh_token"),
        }
        logger.info(f"OIDC login for user {user.id}")
        return RedirectResponse("/", status_code=302)

    async def logout(self, request: Request) -> Response:
        request.session.clear()
        try:
            config = await self.discover()
        except ServiceUnavailableError:
            return RedirectResponse("/", status_code=302)
        end_session = config.get("end_session_endpoint")
        if not end_session:
            return RedirectResponse("/", status_code=302)
        params = {
            "client_id": self.settings.repl_id,
            "post_logout_redirect_uri": f"{request.url.scheme}://{request.url.hostname}",
        }
        return RedirectResponse(f"{end_session}?{urlencode(params)}", status_code=302)

    async def resolve_identity(self, request: Request) -> Optional[str]:
        user_id = request.session.get("user_id")
        oidc = request.session.get("oidc")
        if user_id is None or oidc is None:
            # Email sessions carry no provider tokens
            return user_id

        expires_at = oidc.get("expires_at")
        if expires_at and time.time() <= expires_at:
            return user_id

        refresh_token = oidc.get("refresh_token")
        if not refresh_token:
            request.session.clear()
            return None

        try:
            config = await self.discover()
            tokens = await self._token_request(
                config,
                {
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": self.settings.repl_id,
                },
            )
            claims = await self.verify_id_token(config, tokens["id_token"])
        except OIDC_ERRORS as e:
            logger.warning(f"OIDC token refresh failed for user {user_id}: {e}")
            request.session.clear()
            return None

        request.session["oidc"] = {
            "expires_at": claims.get("exp"),
            "refresh_token": tokens.get("refresh_token", refresh_token),
        }
        return user_id

    async def _token_request(self, config: Dict[str, Any], data: Dict[str, str]) -> Dict[str, Any]:
        return await self._post_form(config["token_endpoint"], data)

    async def verify_id_token(self, config: Dict[str, Any], id_token: str) -> Dict[str, Any]:
        """Verify signature, issuer and audience of an ID token"""
        header = jwt.get_unverified_header(id_token)
        jwk_set = jwt.PyJWKSet.from_dict(await self._get_json(config["jwks_uri"]))

        signing_key = next(
            (key for key in jwk_set.keys if key.key_id == header.get("kid")), None
        )
        if signing_key is None:
            raise jwt.InvalidTokenError("No matching signing key for ID token")

        return jwt.decode(
            id_token,
            signing_key.key,
            algorithms=ID_TOKEN_ALGORITHMS,
            audience=self.settings.repl_id,
            issuer=config.get("issuer", self.settings.issuer_url),
        )

    def register_routes(self, router: APIRouter):
        super().register_routes(router)
        router.add_api_route("/callback", self.callback, methods=["GET"], include_in_schema=False)

    def describe(self) -> Dict[str, Any]:
        return {"strategy": self.name, "issuer": self.settings.issuer_url}


def select_auth_strategy(
    settings: Settings,
    repository,
    http_session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
) -> AuthStrategy:
    """Pick the authentication strategy for this process"""
    if settings.oidc_configured:
        if not settings.repl_id:
            raise RuntimeError("REPL_ID must be set when REPLIT_DOMAINS is configured")
        strategy: AuthStrategy = OIDCStrategy(settings, repository, http_session_factory)
    elif settings.google_configured:
        strategy = GoogleOAuthStrategy(settings, repository, http_session_factory)
    else:
        strategy = EmailSessionStrategy(settings, repository, http_session_factory)

    logger.info(f"Authentication strategy selected: {strategy.name}")
    return strategy


def require_identity(user_id: Optional[str]) -> str:
    if not user_id:
        raise AuthenticationError("Unauthorized")
    return user_id
