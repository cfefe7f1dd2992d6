import asyncio
import contextlib
import os
import sys

# Add src to path for running directly
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

from anyio import create_task_group
from pydantic import SecretStr

from coreason_oidc_rp import RelyingPartyAsync, RelyingPartyConfig
from coreason_oidc_rp.messages import AuthorizationRequest, ClientMetadata, ProviderMetadata, ResponseType
from coreason_oidc_rp.sessions import AuthSession, FlowState, SessionStore

REDIRECT_URI = "https://rp.example.com/callback"


async def main() -> None:
    """
    Demonstrates the first half of an Authorization Code flow:
    - WebFinger discovery of the issuer for an e-mail address
    - Provider configuration and key retrieval
    - Dynamic client registration
    - Building the authorization URL and remembering the session

    The OPs of two users are discovered concurrently with a TaskGroup.
    """
    print(">>> Starting Async Authorization Code Flow Example")

    config = RelyingPartyConfig(
        http_timeout=5.0,
        pii_salt=SecretStr("super-secret-salt-for-pii-hashing"),
    )
    store = SessionStore()
    providers: dict[str, ProviderMetadata] = {}

    async with RelyingPartyAsync(config) as rp:

        async def discover(email: str) -> None:
            issuer = await rp.obtain_issuer_from_email(email)
            providers[email] = await rp.obtain_provider_information(issuer, expected_issuer=issuer)
            print(f"    - {email} -> {issuer}")

        print(">>> Discovering providers concurrently...")
        try:
            async with create_task_group() as tg:
                tg.start_soon(discover, "jane@example.com")
                tg.start_soon(discover, "john@example.org")
        except Exception as e:
            # Without real OPs behind these domains, discovery fails here
            print(f">>> Expected failure (no real server): {e}")
            return

        for email, provider in providers.items():
            if not provider.registration_endpoint or not provider.authorization_endpoint:
                print(f">>> {provider.issuer} does not support dynamic registration, skipping {email}")
                continue

            client = await rp.register_client(
                provider.registration_endpoint,
                ClientMetadata(redirect_uris=[REDIRECT_URI], response_types=["code"]),
            )
            session = AuthSession(redirect_uri=REDIRECT_URI, scope=["openid", "email"])
            request = AuthorizationRequest(
                scope=session.scope,
                response_type=[ResponseType.CODE],
                client_id=client.client_id,
                redirect_uri=REDIRECT_URI,
                state=session.state,
                nonce=session.nonce,
            )
            await store.save(session.advance(FlowState.AUTHORIZATION_SENT, provider=provider, client=client))
            print(f">>> Send {email} to: {rp.authorization_url(provider.authorization_endpoint, request)}")


if __name__ == "__main__":
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())
