# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oidc_rp

"""
RelyingParty component orchestrating discovery, registration, authorization, token,
UserInfo and ID Token validation.
"""

import functools
import re
from collections.abc import Awaitable, Callable, Mapping, Sequence
from contextlib import AbstractContextManager
from typing import Any, TypeVar
from urllib.parse import urlsplit

import anyio
import httpx
from anyio.from_thread import BlockingPortal, start_blocking_portal
from cryptography import x509
from opentelemetry import trace
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.trace import Status, StatusCode
from pydantic import BaseModel, ConfigDict, JsonValue

from coreason_oidc_rp import discovery, jose, registration
from coreason_oidc_rp.client_auth import apply_client_authentication
from coreason_oidc_rp.codec import ResponseError, from_query_string
from coreason_oidc_rp.config import RelyingPartyConfig
from coreason_oidc_rp.exceptions import CoreasonOIDCError, IntegrityError, KeyNotFoundError, OIDCError
from coreason_oidc_rp.form_post import FormPostResponse, parse_form_post
from coreason_oidc_rp.messages import (
    JWK,
    AuthCodeResponse,
    AuthorizationRequest,
    ClientInformation,
    ClientMetadata,
    IdToken,
    ImplicitResponse,
    ProviderMetadata,
    ThirdPartyLoginRequest,
    TokenRequest,
    TokenResponse,
    UserInfoRequest,
    UserInfoResponse,
)
from coreason_oidc_rp.request_object import resolve_request_object
from coreason_oidc_rp.self_issued import SelfIssuedProvider
from coreason_oidc_rp.transport import HttpResult, SafeHTTPTransport, fetch
from coreason_oidc_rp.utils.logger import anonymize, logger
from coreason_oidc_rp.validator import IdTokenValidator, decrypt_token, verify_token

tracer = trace.get_tracer(__name__)

T = TypeVar("T")
R = TypeVar("R", AuthCodeResponse, ImplicitResponse)

JWT_CONTENT_TYPE = "application/jwt"
COMPACT_JWT_PATTERN = re.compile(rb"[\w-]+(\.[\w-]*){2,4}")


class RemoteTarget(BaseModel):
    """Authorization endpoint of a networked OP."""

    model_config = ConfigDict(frozen=True)

    url: str


class SelfIssuedTarget(BaseModel):
    """The self-issued OP, backed by the end-user's certificate."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    certificate: x509.Certificate
    private_key: Any = None


AuthenticationTarget = RemoteTarget | SelfIssuedTarget


class AuthorizationDispatch(BaseModel):
    """
    What the OP answered when the authorization request was sent.

    Attributes:
        url (str): The full authorization request URL.
        status_code (int): HTTP status of the OP answer.
        location (str | None): Redirect target, when the OP redirected.
        body (str): The answer body (a login page, or a form_post page).
    """

    model_config = ConfigDict(frozen=True)

    url: str
    status_code: int
    location: str | None = None
    body: str = ""


def _response_part(value: str) -> str:
    """Query or fragment of a full callback URL; anything else is returned as is."""
    parts = urlsplit(value)
    if parts.scheme and parts.netloc:
        return parts.fragment or parts.query
    return value


def _looks_like_jwt(result: HttpResult) -> bool:
    if result.content_type == JWT_CONTENT_TYPE:
        return True
    return COMPACT_JWT_PATTERN.fullmatch(result.content.strip()) is not None


class RelyingPartyAsync:
    """
    Async implementation of the Relying Party (The Core).
    Handles resources via async context manager.

    The engine keeps no per-flow state: provider configuration, client information and
    key sets are passed in by the caller, so concurrent flows never share mutable data.
    """

    def __init__(self, config: RelyingPartyConfig, client: httpx.AsyncClient | None = None) -> None:
        """
        Initialize the RelyingPartyAsync.

        Args:
            config: The configuration object.
            client: External async client (optional). If not provided, a `SafeHTTPTransport` client
                is created, or a plain one when `unsafe_local_dev` is set.
        """
        self.config = config
        self._internal_client = client is None

        if client:
            self._client = client
        else:
            transport = httpx.AsyncHTTPTransport() if config.unsafe_local_dev else SafeHTTPTransport()
            self._client = httpx.AsyncClient(transport=transport, timeout=config.http_timeout)

        # Instrument the client for distributed tracing
        HTTPXClientInstrumentor().instrument_client(self._client)

        self.validator = IdTokenValidator(
            clock_skew_leeway=config.clock_skew_leeway,
            max_id_token_age=config.max_id_token_age,
            pii_salt=config.pii_salt,
        )

    async def __aenter__(self) -> "RelyingPartyAsync":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._internal_client:
            await self._client.aclose()

    @property
    def _max_bytes(self) -> int:
        return self.config.max_response_bytes

    # Discovery and registration

    async def obtain_issuer_from_url(self, url: str, hostname: str | None = None) -> str:
        """
        Discovers the issuer for a URL identifier through WebFinger.

        Raises:
            OIDCError: If the URL is malformed or the WebFinger answer is not acceptable.
            TransportError: If the call fails.
        """
        return await discovery.obtain_issuer_from_url(
            self._client, url, hostname, leeway=self.config.clock_skew_leeway, max_bytes=self._max_bytes
        )

    async def obtain_issuer_from_email(self, email: str, hostname: str | None = None) -> str:
        """
        Discovers the issuer for an e-mail identifier through WebFinger.

        Raises:
            OIDCError: If the address is malformed or the WebFinger answer is not acceptable.
            TransportError: If the call fails.
        """
        return await discovery.obtain_issuer_from_email(
            self._client, email, hostname, leeway=self.config.clock_skew_leeway, max_bytes=self._max_bytes
        )

    async def obtain_provider_information(self, hostname: str, expected_issuer: str | None = None) -> ProviderMetadata:
        """
        Fetches the OP configuration and a fresh snapshot of its keys.

        Raises:
            OIDCError: "Wrong issuer, discarding configuration" on issuer mismatch.
            TransportError: If a call fails.
        """
        return await discovery.obtain_provider_information(
            self._client, hostname, expected_issuer, max_bytes=self._max_bytes
        )

    async def register_client(
        self,
        registration_endpoint: str,
        client_metadata: ClientMetadata,
        token_endpoint_auth_method: str = registration.DEFAULT_TOKEN_ENDPOINT_AUTH_METHOD,
    ) -> ClientInformation:
        """
        Registers the RP with the OP.

        Raises:
            OIDCError: "Error while registering client: ..." if the OP refused.
            MessageValidationError: If the returned client information is invalid.
            TransportError: If a call fails.
        """
        return await registration.register_client(
            self._client,
            registration_endpoint,
            client_metadata,
            token_endpoint_auth_method,
            max_bytes=self._max_bytes,
        )

    # Authorization

    def authorization_url(self, authorization_endpoint: str, request: AuthorizationRequest) -> str:
        """
        Validates `request` and returns the URL sending it to the authorization endpoint.

        Raises:
            MessageValidationError: If the request is invalid.
        """
        request.validate_message()
        separator = "&" if "?" in authorization_endpoint else "?"
        return f"{authorization_endpoint}{separator}{request.to_query_string()}"

    async def _dispatch(self, url: str) -> AuthorizationDispatch:
        result = await fetch(self._client, url, follow_redirects=False, max_bytes=self._max_bytes)
        if result.status_code >= 400:
            data = result.json_object()
            raise ResponseError.from_dict(data, validate=False).to_exception("Error while parsing authorization response")
        return AuthorizationDispatch(
            url=url,
            status_code=result.status_code,
            location=result.headers.get("location"),
            body=result.content.decode("utf-8", errors="replace"),
        )

    async def authenticate(
        self, target: AuthenticationTarget, request: AuthorizationRequest
    ) -> ImplicitResponse | AuthorizationDispatch:
        """
        Starts authentication against `target`.

        A remote OP receives the request at its authorization endpoint; its answer (a
        redirect, a login page or a form_post page) is returned without following
        redirects. The self-issued OP answers locally with an implicit response.

        Args:
            target: `RemoteTarget(url)` or `SelfIssuedTarget(certificate, private_key)`.
            request: The authorization request.

        Returns:
            ImplicitResponse | AuthorizationDispatch: The self-issued response, or the OP answer.

        Raises:
            MessageValidationError: If the request is invalid.
            OIDCError: If the OP answered with an error.
            TransportError: If the call fails.
        """
        match target:
            case SelfIssuedTarget():
                provider = SelfIssuedProvider(
                    target.certificate, target.private_key, token_lifetime=self.config.self_issued_token_lifetime
                )
                return provider.authenticate(request)
            case RemoteTarget():
                return await self._dispatch(self.authorization_url(target.url, request))
        raise TypeError(f"Unsupported authentication target {type(target).__name__}")

    async def third_party_initiated_login(
        self, request: AuthorizationRequest, authorization_endpoint: str
    ) -> AuthorizationDispatch:
        """Sends the authorization request that answers a third-party initiated login."""
        return await self._dispatch(self.authorization_url(authorization_endpoint, request))

    def parse_third_party_login(self, query: str) -> ThirdPartyLoginRequest:
        """
        Parses a request received at the RP's `initiate_login_uri`.

        Raises:
            MessageValidationError: If `iss` is missing.
        """
        return ThirdPartyLoginRequest.from_query_string(_response_part(query))

    def _parse_authorization_response(
        self,
        cls: type[R],
        query: str,
        scope: Sequence[str] | None,
        state: str | None,
    ) -> R:
        parsed = from_query_string(cls, _response_part(query))
        if isinstance(parsed, ResponseError):
            raise parsed.to_exception("Error while parsing authorization response")
        parsed.validate_message()

        if scope is not None and parsed.scope is not None and set(parsed.scope) != set(scope):
            raise OIDCError("Error with authentication answer, wrong scope.")

        if state is not None and parsed.state != state:
            raise OIDCError("Error with authentication answer, wrong state.")

        return parsed

    def parse_auth_code_response(
        self, query: str, scope: Sequence[str] | None = None, state: str | None = None
    ) -> AuthCodeResponse:
        """
        Parses an authorization code response (query string, fragment or full callback URL).

        Args:
            query: The response.
            scope: Scopes of the request, checked against the echoed `scope` when both are present.
            state: `state` of the request.

        Raises:
            OIDCError: "Error while parsing authorization response: ..." if the OP returned
                an error, or a wrong scope / wrong state error.
            MessageValidationError: If `code` is missing.
        """
        return self._parse_authorization_response(AuthCodeResponse, query, scope, state)

    def parse_auth_implicit_response(
        self, query: str, scope: Sequence[str] | None = None, state: str | None = None
    ) -> ImplicitResponse:
        """
        Parses an implicit or hybrid response. See `parse_auth_code_response`.

        Raises:
            MessageValidationError: If `id_token` or `state` is missing.
        """
        return self._parse_authorization_response(ImplicitResponse, query, scope, state)

    def parse_form_post(self, html: str | bytes) -> FormPostResponse:
        """
        Extracts the response fields of a `response_mode=form_post` page.

        Raises:
            MessageValidationError: If the page holds no form.
        """
        return parse_form_post(html)

    # Token and UserInfo endpoints

    async def submit_token_request(
        self,
        url: str,
        request: TokenRequest,
        client_information: ClientInformation,
        private_key: Any = None,
    ) -> TokenResponse:
        """
        Sends a token request, authenticated per `client_information.token_endpoint_auth_method`.

        Emits an OpenTelemetry span `submit_token_request`.

        Args:
            url: The token endpoint.
            request: The token request.
            client_information: The registered client.
            private_key: Signing key for `private_key_jwt`.

        Returns:
            TokenResponse: The validated token response.

        Raises:
            OIDCError: "Error while submitting token request: ..." if the OP returned an error.
            MessageValidationError: If the request or the response is invalid.
            TransportError: If the call fails.
        """
        with tracer.start_as_current_span("submit_token_request") as span:
            span.set_attribute("oauth.grant_type", request.grant_type or "")
            try:
                request.validate_message()
                message, headers = apply_client_authentication(
                    request,
                    url,
                    client_information,
                    private_key=private_key,
                    assertion_lifetime=self.config.client_assertion_lifetime,
                )
                result = await fetch(
                    self._client,
                    url,
                    "POST",
                    data=message.to_form(),
                    headers=headers,
                    max_bytes=self._max_bytes,
                )
                data = result.json_object()
                if "error" in data:
                    raise ResponseError.from_dict(data, validate=False).to_exception(
                        "Error while submitting token request"
                    )

                response = TokenResponse.from_dict(data)
                logger.info(f"Token request ({request.grant_type}) succeeded at {url}")
                span.set_status(Status(StatusCode.OK))
                return response
            except CoreasonOIDCError as e:
                logger.warning(f"Token request at {url} failed: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

    async def refresh_token(
        self,
        url: str,
        refresh_token: str,
        client_information: ClientInformation,
        scope: Sequence[str] | None = None,
        private_key: Any = None,
    ) -> TokenResponse:
        """Exchanges a refresh token for new tokens."""
        request = TokenRequest(
            grant_type="refresh_token",
            refresh_token=refresh_token,
            scope=list(scope) if scope is not None else None,
        )
        return await self.submit_token_request(url, request, client_information, private_key)

    async def get_user_info(
        self,
        url: str,
        request: UserInfoRequest,
        access_token: str,
        expected_sub: str | None = None,
        use_bearer_header: bool = True,
        client_secret: str | None = None,
        rp_keys: Sequence[JWK] | None = None,
        provider_keys: Sequence[JWK] | None = None,
        expected_alg: str | None = None,
    ) -> UserInfoResponse:
        """
        Calls the UserInfo endpoint.

        The access token travels in an `Authorization: Bearer` header, or as a form body
        parameter when `use_bearer_header` is False. A JWT answer is decrypted with the
        RP keys, then verified with the OP keys or the client secret. An answer that is
        only encrypted carries its claims directly as the JWE plaintext.

        Emits an OpenTelemetry span `get_user_info`.

        Args:
            url: The UserInfo endpoint.
            request: The UserInfo request.
            access_token: The access token.
            expected_sub: `sub` of the ID Token; the answer must carry the same one.
            use_bearer_header: Send the token in the Authorization header.
            client_secret: For HMAC signed answers.
            rp_keys: RP private keys, for encrypted answers.
            provider_keys: OP keys, for signed answers.
            expected_alg: The registered `userinfo_signed_response_alg`, if any.

        Raises:
            OIDCError: "Error while asking for user info: ..." if the OP returned an error,
                or "Wrong sub in UserInfo, it does not match idToken's."
            IntegrityError: If a JWT answer does not decrypt or verify.
            TransportError: If the call fails.
        """
        with tracer.start_as_current_span("get_user_info") as span:
            try:
                headers: dict[str, str] = {}
                if use_bearer_header:
                    headers["Authorization"] = f"Bearer {access_token}"
                    message = request
                else:
                    message = request.model_copy(update={"access_token": access_token})

                result = await fetch(
                    self._client,
                    url,
                    "POST",
                    data=message.to_form(),
                    headers=headers,
                    max_bytes=self._max_bytes,
                )

                if _looks_like_jwt(result):
                    result.raise_for_status()
                    token = result.text.strip()
                    if jose.is_encrypted(token):
                        token = decrypt_token(token, rp_keys).strip()
                    if token.startswith("{"):
                        # Encrypted only: the JWE plaintext is the claim set itself
                        if expected_alg not in (None, jose.NONE_ALGORITHM):
                            raise IntegrityError(f"UserInfo is not signed, expected {expected_alg}.")
                        data = jose.payload_claims(token)
                    else:
                        data = verify_token(token, provider_keys, client_secret, expected_alg)
                else:
                    data = result.json_object()
                    if "error" in data:
                        raise ResponseError.from_dict(data, validate=False).to_exception(
                            "Error while asking for user info"
                        )

                response = UserInfoResponse.from_dict(data)
                if expected_sub is not None and response.sub != expected_sub:
                    raise OIDCError("Wrong sub in UserInfo, it does not match idToken's.")

                user_hash = anonymize(response.sub or "unknown", self.config.pii_salt.get_secret_value())
                logger.info(f"UserInfo retrieved for user {user_hash}")
                span.set_attribute("enduser.id", user_hash)
                span.set_status(Status(StatusCode.OK))
                return response
            except CoreasonOIDCError as e:
                logger.warning(f"UserInfo request at {url} failed: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

    async def _source_claims(
        self,
        source_name: str,
        source: Mapping[str, Any],
        verify_keys: Mapping[str, Any],
        access_tokens: Mapping[str, str],
        allow_unverified: bool,
    ) -> dict[str, Any]:
        if "JWT" in source:
            token = str(source["JWT"])
        elif "endpoint" in source:
            access_token = source.get("access_token") or access_tokens.get(source_name)
            headers = {"Authorization": f"Bearer {access_token}"} if access_token else None
            result = await fetch(self._client, str(source["endpoint"]), headers=headers, max_bytes=self._max_bytes)
            if not _looks_like_jwt(result):
                return result.json_object()
            result.raise_for_status()
            token = result.text.strip()
        else:
            raise OIDCError(f"Claim source {source_name} has neither JWT nor endpoint.")

        key = verify_keys.get(source_name)
        if key is not None:
            if isinstance(key, Sequence) and not isinstance(key, (str, bytes)):
                return verify_token(token, provider_keys=key)
            return jose.payload_claims(jose.decode_jws(token, key))
        if not allow_unverified:
            raise KeyNotFoundError(f"No key available to verify claim source {source_name}.")
        logger.warning(f"Reading claim source {source_name} without signature verification")
        return jose.unverified_claims(token)

    async def resolve_claim_sources(
        self,
        user_info: UserInfoResponse,
        verify_keys: Mapping[str, Any] | None = None,
        access_tokens: Mapping[str, str] | None = None,
        allow_unverified: bool = False,
    ) -> dict[str, JsonValue]:
        """
        Resolves aggregated and distributed claims referenced by `_claim_names` and
        `_claim_sources`.

        Args:
            user_info: The UserInfo response carrying the claim references.
            verify_keys: Per source name, a verification key or a JWK list.
            access_tokens: Per source name, the access token for a distributed endpoint
                that does not carry its own.
            allow_unverified: Read JWTs of sources without a key unverified.

        Returns:
            dict[str, JsonValue]: The resolved claim values, by claim name.

        Raises:
            OIDCError: If a source is malformed or lacks a referenced claim.
            KeyResolutionError: If a source cannot be verified.
            IntegrityError: If a source JWT does not verify.
        """
        names = user_info.custom_claims.get("_claim_names")
        sources = user_info.custom_claims.get("_claim_sources")
        if not isinstance(names, dict) or not isinstance(sources, dict):
            return {}

        resolved: dict[str, JsonValue] = {}
        loaded: dict[str, dict[str, Any]] = {}
        for claim, source_name in names.items():
            source_name = str(source_name)
            source = sources.get(source_name)
            if not isinstance(source, dict):
                raise OIDCError(f"Claim source {source_name} referenced by {claim} is missing.")
            if source_name not in loaded:
                loaded[source_name] = await self._source_claims(
                    source_name, source, verify_keys or {}, access_tokens or {}, allow_unverified
                )
            if claim not in loaded[source_name]:
                raise OIDCError(f"Claim {claim} not found in claim source {source_name}.")
            resolved[claim] = loaded[source_name][claim]
        return resolved

    # ID Token

    def get_id_token(
        self,
        token: str,
        provider_keys: Sequence[JWK] | None = None,
        client_secret: str | None = None,
        rp_keys: Sequence[JWK] | None = None,
        expected_alg: str | None = None,
    ) -> IdToken:
        """Decrypts, verifies and deserializes an ID Token. See `IdTokenValidator.get_id_token`."""
        return self.validator.get_id_token(token, provider_keys, client_secret, rp_keys, expected_alg)

    def validate_id_token(
        self,
        id_token: IdToken,
        client_information: ClientInformation,
        issuer: str,
        nonce: str | None = None,
    ) -> None:
        """Validates ID Token claims. See `IdTokenValidator.validate_id_token`."""
        self.validator.validate_id_token(id_token, client_information, issuer, nonce)

    def validate_hash_claims(
        self,
        id_token: IdToken,
        alg: str,
        code: str | None = None,
        access_token: str | None = None,
    ) -> None:
        """Checks `c_hash` / `at_hash`. See `IdTokenValidator.validate_hash_claims`."""
        self.validator.validate_hash_claims(id_token, alg, code, access_token)

    async def resolve_request_object(
        self,
        request: AuthorizationRequest,
        verify_key: Any = None,
        decrypt_key: Any = None,
        allow_none: bool = False,
    ) -> AuthorizationRequest:
        """Returns the effective request of a `request` / `request_uri` authorization request."""
        return await resolve_request_object(
            self._client, request, verify_key, decrypt_key, allow_none, max_bytes=self._max_bytes
        )


class RelyingParty:
    """
    Sync facade for RelyingPartyAsync.

    Inside a `with` block every call runs on one event loop held by an anyio blocking
    portal, so the HTTP connection pool is reused. Outside it each call gets its own loop.
    """

    def __init__(self, config: RelyingPartyConfig, client: httpx.AsyncClient | None = None) -> None:
        """
        Initialize the RelyingParty facade.

        Args:
            config: The configuration object.
            client: External async client (optional).
        """
        self._async = RelyingPartyAsync(config, client)
        self._portal_cm: AbstractContextManager[BlockingPortal] | None = None
        self._portal: BlockingPortal | None = None

    def __enter__(self) -> "RelyingParty":
        self._portal_cm = start_blocking_portal()
        self._portal = self._portal_cm.__enter__()
        self._portal.call(self._async.__aenter__)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        try:
            self._run(self._async.__aexit__, exc_type, exc_val, exc_tb)
        finally:
            if self._portal_cm is not None:
                self._portal_cm.__exit__(None, None, None)
            self._portal_cm = None
            self._portal = None

    def _run(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        call = functools.partial(func, *args, **kwargs)
        if self._portal is not None:
            return self._portal.call(call)
        return anyio.run(call)

    def obtain_issuer_from_url(self, url: str, hostname: str | None = None) -> str:
        return self._run(self._async.obtain_issuer_from_url, url, hostname)

    def obtain_issuer_from_email(self, email: str, hostname: str | None = None) -> str:
        return self._run(self._async.obtain_issuer_from_email, email, hostname)

    def obtain_provider_information(self, hostname: str, expected_issuer: str | None = None) -> ProviderMetadata:
        return self._run(self._async.obtain_provider_information, hostname, expected_issuer)

    def register_client(
        self,
        registration_endpoint: str,
        client_metadata: ClientMetadata,
        token_endpoint_auth_method: str = registration.DEFAULT_TOKEN_ENDPOINT_AUTH_METHOD,
    ) -> ClientInformation:
        return self._run(
            self._async.register_client, registration_endpoint, client_metadata, token_endpoint_auth_method
        )

    def authorization_url(self, authorization_endpoint: str, request: AuthorizationRequest) -> str:
        return self._async.authorization_url(authorization_endpoint, request)

    def authenticate(
        self, target: AuthenticationTarget, request: AuthorizationRequest
    ) -> ImplicitResponse | AuthorizationDispatch:
        return self._run(self._async.authenticate, target, request)

    def third_party_initiated_login(
        self, request: AuthorizationRequest, authorization_endpoint: str
    ) -> AuthorizationDispatch:
        return self._run(self._async.third_party_initiated_login, request, authorization_endpoint)

    def parse_third_party_login(self, query: str) -> ThirdPartyLoginRequest:
        return self._async.parse_third_party_login(query)

    def parse_auth_code_response(
        self, query: str, scope: Sequence[str] | None = None, state: str | None = None
    ) -> AuthCodeResponse:
        return self._async.parse_auth_code_response(query, scope, state)

    def parse_auth_implicit_response(
        self, query: str, scope: Sequence[str] | None = None, state: str | None = None
    ) -> ImplicitResponse:
        return self._async.parse_auth_implicit_response(query, scope, state)

    def parse_form_post(self, html: str | bytes) -> FormPostResponse:
        return self._async.parse_form_post(html)

    def submit_token_request(
        self,
        url: str,
        request: TokenRequest,
        client_information: ClientInformation,
        private_key: Any = None,
    ) -> TokenResponse:
        return self._run(self._async.submit_token_request, url, request, client_information, private_key)

    def refresh_token(
        self,
        url: str,
        refresh_token: str,
        client_information: ClientInformation,
        scope: Sequence[str] | None = None,
        private_key: Any = None,
    ) -> TokenResponse:
        return self._run(self._async.refresh_token, url, refresh_token, client_information, scope, private_key)

    def get_user_info(self, url: str, request: UserInfoRequest, access_token: str, **kwargs: Any) -> UserInfoResponse:
        return self._run(self._async.get_user_info, url, request, access_token, **kwargs)

    def resolve_claim_sources(self, user_info: UserInfoResponse, **kwargs: Any) -> dict[str, JsonValue]:
        return self._run(self._async.resolve_claim_sources, user_info, **kwargs)

    def get_id_token(self, token: str, **kwargs: Any) -> IdToken:
        return self._async.get_id_token(token, **kwargs)

    def validate_id_token(
        self,
        id_token: IdToken,
        client_information: ClientInformation,
        issuer: str,
        nonce: str | None = None,
    ) -> None:
        self._async.validate_id_token(id_token, client_information, issuer, nonce)

    def validate_hash_claims(
        self,
        id_token: IdToken,
        alg: str,
        code: str | None = None,
        access_token: str | None = None,
    ) -> None:
        self._async.validate_hash_claims(id_token, alg, code, access_token)

    def resolve_request_object(self, request: AuthorizationRequest, **kwargs: Any) -> AuthorizationRequest:
        return self._run(self._async.resolve_request_object, request, **kwargs)
