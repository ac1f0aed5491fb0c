"""OAuth2 / OpenID Connect authentication module.

Sessions are created from one of three context shapes, checked in order:

1. ``code`` + ``state``: authorization-code callback from a browser login
   started by get_login_redirect_url(). The state record holds the
   redirect URI and is single use.
2. ``code`` + ``redirectUri`` + ``codeVerifier``: PKCE exchange initiated
   by a frontend that ran the authorization request itself.
3. ``sessionUUID`` / ``sessionId`` / ``uuid``: resume a session created by
   (1) or (2), using the access token saved in the user-session table.

Access tokens are decoded without signature verification (they come from
the token endpoint or our own storage) and must carry an unexpired ``exp``.
There is no refresh: an expired token ends the session.
"""

from __future__ import annotations

import secrets
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlencode

import httpx
import structlog
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.httpx_client import AsyncOAuth2Client

from scopeauth.auth.customizer import CustomizerContext, SessionCustomizer, load_customizer
from scopeauth.auth.memoization import Memoization
from scopeauth.auth.metadata import AuthenticationMetaData, OAuth2MetaData
from scopeauth.auth.modules.base import AuthenticationModule
from scopeauth.auth.oidc import OIDCMetadataCache
from scopeauth.auth.records import RecordStore
from scopeauth.auth.session import Session, SessionStoreRegistry, User
from scopeauth.auth.tokens import check_expiry, decode_claims, decode_unverified, token_identity
from scopeauth.core.config import AuthSettings
from scopeauth.errors import AuthenticationError, InfrastructureError

logger = structlog.get_logger()

SESSION_ID_KEYS = ("sessionUUID", "sessionId", "uuid")


def _oauth2(metadata: AuthenticationMetaData) -> OAuth2MetaData:
    if not isinstance(metadata, OAuth2MetaData):
        raise AuthenticationError(f"Provider {metadata.name} is not an OAuth2 provider")
    return metadata


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def session_from_claims(claims: Mapping[str, Any]) -> Session:
    """Build a session from access-token claims.

    Raises:
        AuthenticationError: If the claims carry neither ``sub`` nor ``email``
    """
    user_id = token_identity(claims)
    if user_id is None:
        raise AuthenticationError("Token has no subject or email")
    name = claims.get("name") or user_id
    email = claims.get("email") or user_id
    exp = claims.get("exp")
    session = Session(
        user=User(id=user_id, display_name=name),
        expires_at=float(exp) if isinstance(exp, (int, float)) else None,
    )
    session.id_reference = session.uuid
    session.with_value_for_frontend("user", {"name": name, "email": email})
    return session


class OAuth2Module(AuthenticationModule):
    """Authenticates against an OAuth2 authorization server or OIDC provider.

    Customizer hooks run whenever a session is rebuilt from a token: after a
    code exchange and on every resume that misses the session store. On
    resume, ``customize_session`` gets a context with the decoded claims only
    (no raw access token, no ID-token claims), then
    ``final_customize_session`` runs as usual. Sessions served from the
    session store are returned as stored, without either hook.
    """

    def __init__(
        self,
        record_store: RecordStore,
        session_stores: SessionStoreRegistry | None = None,
        settings: AuthSettings | None = None,
        oidc_cache: OIDCMetadataCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the module.

        Args:
            record_store: Storage for state and user-session records
            session_stores: Optional cache of fully built sessions
            settings: Runtime settings (defaults to AuthSettings())
            oidc_cache: Shared discovery cache (one is created if omitted)
            transport: Optional httpx transport for provider calls
        """
        self._records = record_store
        self._session_stores = session_stores or SessionStoreRegistry()
        self._settings = settings or AuthSettings()
        self._transport = transport
        self._oidc = oidc_cache or OIDCMetadataCache(
            transport=transport,
            timeout=self._settings.http_timeout,
        )
        self._token_cache: Memoization[str, str] = Memoization(
            timeout=self._settings.access_token_cache_ttl,
            max_size=self._settings.access_token_cache_max_size,
            may_store_none=False,
        )
        self._customizer: SessionCustomizer | None = None
        self._customizer_loaded = False

    @property
    def token_cache(self) -> Memoization[str, str]:
        return self._token_cache

    def uses_session_cookie(self) -> bool:
        return True

    # -- session creation -------------------------------------------------

    async def create_session(
        self,
        metadata: AuthenticationMetaData,
        context: Mapping[str, str],
    ) -> Session:
        oauth2 = _oauth2(metadata)
        context = context or {}

        if "code" in context and "state" in context:
            redirect_uri = await self._consume_state(oauth2, context["state"])
            return await self._exchange_code(
                oauth2,
                code=context["code"],
                redirect_uri=redirect_uri,
                code_verifier=None,
            )

        if "code" in context and "redirectUri" in context and "codeVerifier" in context:
            return await self._exchange_code(
                oauth2,
                code=context["code"],
                redirect_uri=context["redirectUri"],
                code_verifier=context["codeVerifier"],
            )

        session_uuid = next((context[key] for key in SESSION_ID_KEYS if context.get(key)), None)
        if session_uuid is not None:
            return await self._resume_session(oauth2, session_uuid)

        message = "Did not receive recognized values in context for creating session"
        logger.warning(message, context_keys=sorted(context))
        raise AuthenticationError(message)

    async def _consume_state(self, metadata: OAuth2MetaData, state: str) -> str:
        """Look up and delete a login state record, returning its redirect URI."""
        system = Session.system()
        table = metadata.redirect_state_table
        try:
            record = await self._records.get(table, {"state": state}, actor=system)
        except Exception as e:
            raise InfrastructureError("Error looking up login state") from e
        if record is None:
            logger.warning("Login state not found")
            raise AuthenticationError("State not found")

        try:
            await self._records.delete(table, {"state": state}, actor=system)
        except Exception as e:
            logger.warning("Failed to delete login state", error=str(e))

        created = _parse_timestamp(record.get("createDate"))
        if created is not None:
            age = (datetime.now(UTC) - created).total_seconds()
            if age > self._settings.state_ttl:
                logger.warning("Expired login state", age_seconds=int(age))
                raise AuthenticationError("State expired")

        redirect_uri = record.get("redirectUri")
        if not redirect_uri:
            raise AuthenticationError("State has no redirect URI")
        return redirect_uri

    async def _fetch_token(
        self,
        metadata: OAuth2MetaData,
        code: str,
        redirect_uri: str,
        code_verifier: str | None,
    ) -> dict[str, Any]:
        endpoints = await self._oidc.get(metadata)
        auth_method = "client_secret_basic" if metadata.client_secret else "none"
        kwargs: dict[str, Any] = {"code": code, "redirect_uri": redirect_uri}
        if code_verifier is not None:
            kwargs["code_verifier"] = code_verifier

        try:
            async with AsyncOAuth2Client(
                client_id=metadata.client_id,
                client_secret=metadata.client_secret,
                token_endpoint_auth_method=auth_method,
                redirect_uri=redirect_uri,
                transport=self._transport,
                timeout=self._settings.http_timeout,
            ) as client:
                token = await client.fetch_token(
                    endpoints.token_endpoint,
                    grant_type="authorization_code",
                    **kwargs,
                )
        except AuthlibBaseError as e:
            logger.info(
                "Token request failed",
                provider=metadata.name,
                code=e.error,
                description=e.description,
            )
            raise AuthenticationError(e.description or e.error or "Token request failed") from e
        except httpx.HTTPError as e:
            logger.warning("Token endpoint unreachable", provider=metadata.name, error=str(e))
            raise InfrastructureError("Token request failed") from e
        except ValueError as e:
            raise AuthenticationError("Invalid token response") from e

        return dict(token)

    async def _exchange_code(
        self,
        metadata: OAuth2MetaData,
        code: str,
        redirect_uri: str,
        code_verifier: str | None,
    ) -> Session:
        token = await self._fetch_token(metadata, code, redirect_uri, code_verifier)
        access_token = token.get("access_token")
        if not access_token:
            raise AuthenticationError("Token response has no access token")

        claims = decode_claims(access_token)

        id_token_claims = None
        if token.get("id_token"):
            try:
                id_token_claims = dict(decode_unverified(token["id_token"]))
            except AuthenticationError as e:
                logger.debug("Could not decode ID token", error=str(e))

        session = session_from_claims(claims)
        await self._insert_user_session(metadata, session, access_token)
        await self._customize(
            metadata,
            session,
            CustomizerContext(
                jwt_claims=dict(claims),
                access_token=access_token,
                id_token_claims=id_token_claims,
            ),
        )
        await self._final_customize(metadata, session)
        await self._store_session(metadata, session.uuid, session)

        logger.info(
            "OAuth2 authentication successful",
            provider=metadata.name,
            user_id=session.user.id,
            session_uuid=session.uuid,
        )
        return session

    async def _insert_user_session(self, metadata: OAuth2MetaData, session: Session, access_token: str) -> None:
        try:
            await self._records.insert(
                metadata.user_session_table,
                {"uuid": session.uuid, "userId": session.user.id, "accessToken": access_token},
                actor=Session.system(),
            )
        except Exception as e:
            raise InfrastructureError("Error saving user session") from e

    async def _resume_session(self, metadata: OAuth2MetaData, session_uuid: str) -> Session:
        if metadata.session_store_enabled:
            cached = await self._session_stores.load_session(session_uuid)
            if cached is not None:
                if not cached.is_expired:
                    return cached
                # the token behind it has expired; fall through to the token check
                await self._session_stores.remove_session(session_uuid)

        access_token = await self._access_token_for(metadata, session_uuid)
        if access_token is None:
            raise AuthenticationError("Session not found")

        claims = decode_claims(access_token)
        session = session_from_claims(claims)
        session.uuid = session_uuid
        session.id_reference = session_uuid
        await self._customize(metadata, session, CustomizerContext(jwt_claims=dict(claims)))
        await self._final_customize(metadata, session)
        await self._store_session(metadata, session_uuid, session)
        return session

    # -- token lookup -----------------------------------------------------

    async def _access_token_for(self, metadata: OAuth2MetaData, session_uuid: str) -> str | None:
        async def load(key: str) -> str | None:
            return await self._load_access_token(metadata, key)

        if self._settings.memoize_enabled:
            return await self._token_cache.get_or_compute(session_uuid, load)
        return await load(session_uuid)

    async def _load_access_token(self, metadata: OAuth2MetaData, session_uuid: str) -> str | None:
        """Read the stored access token for a session uuid.

        Raises:
            AuthenticationError: If the token is expired or belongs to a
                different user than the record says
            InfrastructureError: If the record store fails
        """
        try:
            record = await self._records.get(
                metadata.user_session_table,
                {"uuid": session_uuid},
                actor=Session.system(),
            )
        except Exception as e:
            logger.warning("Error looking up user session", session_uuid=session_uuid, error=str(e))
            raise InfrastructureError("Error looking up user session") from e

        if record is None:
            return None
        access_token = record.get("accessToken")
        if access_token is None:
            return None

        claims = decode_claims(access_token)
        stored_user_id = record.get("userId")
        identity = token_identity(claims)
        if stored_user_id is not None and identity is not None and stored_user_id != identity:
            logger.warning(
                "Session userId mismatch",
                session_uuid=session_uuid,
                stored_user_id=stored_user_id,
                token_identity=identity,
            )
            raise AuthenticationError("Session identity mismatch")
        return access_token

    async def is_session_valid(self, metadata: AuthenticationMetaData, session: Session | None) -> bool:
        if session is None:
            return False
        if session.is_system:
            return True
        try:
            access_token = await self._access_token_for(_oauth2(metadata), session.uuid)
            if access_token is None:
                return False
            check_expiry(decode_unverified(access_token))
        except InfrastructureError:
            raise
        except AuthenticationError as e:
            logger.debug("Session is not valid", session_uuid=session.uuid, reason=str(e))
            return False
        return True

    # -- customization ----------------------------------------------------

    def _get_customizer(self, metadata: OAuth2MetaData) -> SessionCustomizer | None:
        if not self._customizer_loaded:
            self._customizer = load_customizer(metadata.customizer)
            self._customizer_loaded = True
        return self._customizer

    async def _customize(self, metadata: OAuth2MetaData, session: Session, context: CustomizerContext) -> None:
        customizer = self._get_customizer(metadata)
        if customizer is None:
            return
        try:
            await customizer.customize_session(session, context)
        except AuthenticationError:
            raise
        except Exception as e:
            logger.warning("Session customization failed", session_uuid=session.uuid, error=str(e))
            raise AuthenticationError("Session customization failed") from e

    async def _final_customize(self, metadata: OAuth2MetaData, session: Session) -> None:
        customizer = self._get_customizer(metadata)
        if customizer is None:
            return
        try:
            await customizer.final_customize_session(session, Session.system())
        except Exception as e:
            logger.warning("Final session customization failed", session_uuid=session.uuid, error=str(e))

    async def _store_session(self, metadata: OAuth2MetaData, session_uuid: str, session: Session) -> None:
        if not metadata.session_store_enabled:
            return
        ttl = float(self._settings.session_store_ttl)
        remaining = session.remaining_seconds
        if remaining is not None:
            ttl = min(ttl, remaining)
        await self._session_stores.store_session(session_uuid, session, ttl)

    # -- login / logout ---------------------------------------------------

    async def get_login_redirect_url(self, metadata: AuthenticationMetaData, original_url: str) -> str:
        """Start a browser login: persist a state value and build the authorize URL.

        Raises:
            AuthenticationError: If the endpoint cannot be resolved or the
                state cannot be saved
        """
        try:
            oauth2 = _oauth2(metadata)
            endpoints = await self._oidc.get(oauth2)
            if oauth2.state_max_length is None:
                state_bytes = self._settings.default_state_bytes
            else:
                state_bytes = (oauth2.state_max_length // 4) * 3
            state = secrets.token_urlsafe(state_bytes)
            await self._records.insert(
                oauth2.redirect_state_table,
                {"state": state, "redirectUri": original_url},
                actor=Session.system(),
            )
        except Exception as e:
            logger.warning("Error getting login redirect url", provider=metadata.name, error=str(e))
            raise AuthenticationError("Error getting login redirect url") from e

        params = {
            "client_id": oauth2.client_id,
            "redirect_uri": original_url,
            "response_type": "code",
            "scope": oauth2.scopes,
            "state": state,
        }
        return f"{endpoints.authorization_endpoint}?{urlencode(params)}"

    async def _forget(self, session_uuids: list[str]) -> None:
        for session_uuid in session_uuids:
            self._token_cache.clear_key(session_uuid)
            await self._session_stores.remove_session(session_uuid)

    async def logout(self, metadata: AuthenticationMetaData, session_uuid: str | None) -> None:
        if session_uuid is None:
            return
        try:
            await self._records.delete(
                _oauth2(metadata).user_session_table,
                {"uuid": session_uuid},
                actor=Session.system(),
            )
            logger.debug("Logged out session", session_uuid=session_uuid)
        except Exception as e:
            logger.warning("Error during logout", session_uuid=session_uuid, error=str(e))
        finally:
            await self._forget([session_uuid])

    async def back_channel_logout(self, metadata: AuthenticationMetaData, logout_token: str | None) -> int:
        """End the sessions named by an OIDC back-channel logout token.

        Sessions are matched by ``sub`` against the stored userId first. If
        that removes nothing and the token has a ``sid``, the stored access
        tokens are scanned for the same ``sid``.

        Returns:
            Number of sessions removed (0 on any error)
        """
        if not logout_token:
            logger.warning("Back-channel logout received with empty logout_token")
            return 0
        uuids: list[str] = []
        try:
            oauth2 = _oauth2(metadata)
            payload = decode_unverified(logout_token)
            sub = payload.get("sub")
            sid = payload.get("sid")
            if not sub and not sid:
                logger.warning("Back-channel logout token missing both 'sub' and 'sid' claims")
                return 0

            logger.info("Processing back-channel logout", sub=sub, sid=sid)
            system = Session.system()
            table = oauth2.user_session_table
            if sub:
                records = await self._records.query(table, {"userId": sub}, actor=system)
                uuids = [r["uuid"] for r in records if r.get("uuid")]
            if not uuids and sid:
                for record in await self._records.query(table, actor=system):
                    try:
                        token_sid = decode_unverified(record.get("accessToken") or "").get("sid")
                    except AuthenticationError:
                        continue
                    if token_sid == sid and record.get("uuid"):
                        uuids.append(record["uuid"])

            for session_uuid in uuids:
                await self._records.delete(table, {"uuid": session_uuid}, actor=system)
            logger.info("Back-channel logout completed", deleted_sessions=len(uuids))
            return len(uuids)
        except Exception as e:
            logger.warning("Error processing back-channel logout", error=str(e))
            return 0
        finally:
            await self._forget(uuids)

    def clear_caches(self) -> None:
        self._token_cache.clear()
        self._oidc.clear()
