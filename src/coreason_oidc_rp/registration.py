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
Dynamic client registration.
"""

import json

import httpx
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from coreason_oidc_rp.codec import ResponseError
from coreason_oidc_rp.exceptions import CoreasonOIDCError, TransportError
from coreason_oidc_rp.messages import ClientInformation, ClientMetadata
from coreason_oidc_rp.transport import DEFAULT_MAX_RESPONSE_BYTES, fetch
from coreason_oidc_rp.utils.logger import logger

tracer = trace.get_tracer(__name__)

DEFAULT_TOKEN_ENDPOINT_AUTH_METHOD = "client_secret_basic"


def build_registration_request(
    client_metadata: ClientMetadata,
    token_endpoint_auth_method: str = DEFAULT_TOKEN_ENDPOINT_AUTH_METHOD,
) -> ClientMetadata:
    """
    Copies the registration fields of `client_metadata` into a fresh request.

    Values assigned by the OP (`client_id`, `client_secret`, ...) are left out when a
    `ClientInformation` is passed in.
    """
    fields = {name: getattr(client_metadata, name) for name in ClientMetadata.model_fields}
    fields["token_endpoint_auth_method"] = token_endpoint_auth_method
    return ClientMetadata(**fields)


async def fetch_sector_identifier(
    client: httpx.AsyncClient,
    uri: str,
    max_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
) -> list[str]:
    """
    Fetches the JSON array of redirect URIs served at a `sector_identifier_uri`.

    Raises:
        TransportError: If the call fails or the body is not a JSON array of strings.
    """
    result = await fetch(client, uri, max_bytes=max_bytes)
    result.raise_for_status()
    try:
        document = json.loads(result.content)
    except ValueError as e:
        raise TransportError(f"Malformed JSON received from {uri}") from e
    if not isinstance(document, list) or not all(isinstance(item, str) for item in document):
        raise TransportError(f"Expected a JSON array of URIs from {uri}")
    return document


async def register_client(
    client: httpx.AsyncClient,
    registration_endpoint: str,
    client_metadata: ClientMetadata,
    token_endpoint_auth_method: str = DEFAULT_TOKEN_ENDPOINT_AUTH_METHOD,
    max_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
) -> ClientInformation:
    """
    Registers the RP with the OP.

    Args:
        client: The async HTTP client.
        registration_endpoint: The OP registration endpoint.
        client_metadata: Metadata to register.
        token_endpoint_auth_method: Client authentication method requested for the token endpoint.
        max_bytes: Response size cap.

    Returns:
        ClientInformation: The validated registration response.

    Raises:
        OIDCError: "Error while registering client: ..." if the OP returned an error.
        MessageValidationError: If the returned client information breaks its invariants.
        TransportError: If a call fails.
    """
    with tracer.start_as_current_span("register_client") as span:
        try:
            request = build_registration_request(client_metadata, token_endpoint_auth_method)
            result = await fetch(
                client,
                registration_endpoint,
                "POST",
                json_body=request.to_dict(),
                max_bytes=max_bytes,
            )
            data = result.json_object()
            if "error" in data:
                raise ResponseError.from_dict(data, validate=False).to_exception("Error while registering client")

            information = ClientInformation.from_dict(data, validate=False)

            sector_uris: list[str] | None = None
            if information.sector_identifier_uri is not None:
                sector_uris = await fetch_sector_identifier(client, information.sector_identifier_uri, max_bytes)
            information.validate_message(sector_identifier_uris=sector_uris)

            logger.info(f"Registered client {information.client_id} at {registration_endpoint}")
            span.set_attribute("oidc.client_id", information.client_id or "")
            span.set_status(Status(StatusCode.OK))
            return information
        except CoreasonOIDCError as e:
            logger.warning(f"Client registration at {registration_endpoint} failed: {e}")
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise
