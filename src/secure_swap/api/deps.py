"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to resolve the signing
identity of a request and build the TradeGateway that acts as it. The
long-lived lifecycle and keyring are created in the app lifespan and kept on
app.state.
"""

from __future__ import annotations

from fastapi import Depends, Header, Request

from secure_swap.config import Settings, get_settings
from secure_swap.domain.authority import Authority, AuthorityKeyring
from secure_swap.services.trade_gateway import TradeGateway
from secure_swap.services.trade_lifecycle import TradeLifecycle


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def get_lifecycle(request: Request) -> TradeLifecycle:
    """Provide the application's TradeLifecycle."""
    return request.app.state.lifecycle


def get_keyring(request: Request) -> AuthorityKeyring:
    return request.app.state.keyring


def get_authority(
    keyring: AuthorityKeyring = Depends(get_keyring),
    x_api_key: str | None = Header(default=None),
) -> Authority:
    """The identity this request signs as. Unknown keys raise UnauthorizedError."""
    return keyring.resolve(x_api_key)


def get_gateway(
    lifecycle: TradeLifecycle = Depends(get_lifecycle),
    authority: Authority = Depends(get_authority),
    settings: Settings = Depends(get_app_settings),
) -> TradeGateway:
    """Provide a TradeGateway bound to the request's authority."""
    return TradeGateway(lifecycle, authority, decimals=settings.asset_decimals)
