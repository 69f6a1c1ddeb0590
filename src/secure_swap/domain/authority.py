"""Signing identities the service acts as.

The ledger sees every state-changing call as coming from one fixed
principal: whoever holds the credential that signed it. An Authority is that
capability, handed to the gateway explicitly so tests can swap in a buyer,
a seller or the arbiter without touching process state.
"""

from __future__ import annotations

from dataclasses import dataclass

from secure_swap.domain.exceptions import UnauthorizedError
from secure_swap.domain.identifiers import normalize_address


@dataclass(frozen=True)
class Authority:
    """A principal the service can sign as."""

    principal: str
    label: str = "service"

    def __post_init__(self) -> None:
        object.__setattr__(self, "principal", normalize_address(self.principal, "principal"))


class AuthorityKeyring:
    """Resolves API keys to the Authority they unlock.

    The default authority is used when a request carries no key.
    """

    def __init__(self, default: Authority, credentials: dict[str, str] | None = None) -> None:
        self._default = default
        self._by_key = {
            key: Authority(principal=principal, label=f"key:{key[:4]}")
            for key, principal in (credentials or {}).items()
        }

    @property
    def default(self) -> Authority:
        return self._default

    def resolve(self, api_key: str | None) -> Authority:
        if not api_key:
            return self._default
        authority = self._by_key.get(api_key)
        if authority is None:
            raise UnauthorizedError("unknown API key", "sign requests", "a configured credential")
        return authority
