"""
Settings: endpoints, timeouts and polling budget.

Fluent builder pattern, as with every policy object in cartflow:

    settings = (
        Settings()
        .with_api_url("https://shop.example/api")
        .with_polling(interval=1.5, max_attempts=20)
        .with_close_url("https://vnpay-close.local/")
    )

Note: Immutable. Each method returns a new Settings.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from urllib.parse import quote

ENV_PREFIX = "CARTFLOW_"


@dataclass(frozen=True, slots=True)
class Settings:
    """cartflow configuration."""

    api_url: str = "http://localhost:8080/api"
    gateway_url: str = "http://localhost:3000/api/payment"
    # Gateway redirects here when the hosted payment page completes.
    return_url: str = "http://localhost:3000/api/payment/vnpay/return"
    close_url: str = "https://vnpay-close.local/"
    # Signs a payment URL when intent creation came back without one; None disables.
    sign_url: str | None = (
        "http://localhost:3000/api/public/users/{email}/carts/{cart_id}/payments/vnpay/order"
    )
    http_timeout: float = 10.0
    poll_interval: float = 1.5
    poll_max_attempts: int = 20
    ledger_url: str = "sqlite+aiosqlite:///:memory:"
    blocked_schemes: tuple[str, ...] = ("appios://", "exp://")
    intent_params: tuple[str, ...] = ("intentId", "orderId")

    def __post_init__(self) -> None:
        if self.poll_interval < 0:
            raise ValueError("poll_interval must be >= 0")
        if self.poll_max_attempts < 1:
            raise ValueError("poll_max_attempts must be >= 1")
        if self.http_timeout <= 0:
            raise ValueError("http_timeout must be > 0")

    @property
    def poll_budget(self) -> float:
        """Upper bound on time spent polling one intent (seconds)."""
        return self.poll_interval * self.poll_max_attempts

    def with_api_url(self, url: str) -> Settings:
        return replace(self, api_url=url)

    def with_gateway_url(self, url: str) -> Settings:
        return replace(self, gateway_url=url)

    def with_return_url(self, url: str) -> Settings:
        return replace(self, return_url=url)

    def with_close_url(self, url: str) -> Settings:
        """
        Set the close URL prefix.

        Native: a fake host that the in-app browser never loads.
        Web: the real page the gateway redirects the tab back to.
        """
        return replace(self, close_url=url)

    def with_sign_url(self, url: str | None) -> Settings:
        return replace(self, sign_url=url)

    def with_timeout(self, *, seconds: float) -> Settings:
        return replace(self, http_timeout=seconds)

    def with_polling(
        self,
        *,
        interval: float | None = None,
        max_attempts: int | None = None,
    ) -> Settings:
        """
        Set the status polling budget.

        Example:
            .with_polling(interval=1.5, max_attempts=20)  # ~30s worst case
        """
        return replace(
            self,
            poll_interval=self.poll_interval if interval is None else interval,
            poll_max_attempts=(
                self.poll_max_attempts if max_attempts is None else max_attempts
            ),
        )

    def with_ledger_url(self, url: str) -> Settings:
        return replace(self, ledger_url=url)

    def gateway_return_url(self) -> str:
        """Return URL handed to the gateway; it forwards to the close URL."""
        return f"{self.return_url}?next={quote(self.close_url, safe='')}"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """
        Build settings from CARTFLOW_* environment variables.

        Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        base = cls()

        def pick(name: str, default: str) -> str:
            return env.get(f"{ENV_PREFIX}{name}", default)

        return cls(
            api_url=pick("API_URL", base.api_url),
            gateway_url=pick("GATEWAY_URL", base.gateway_url),
            return_url=pick("RETURN_URL", base.return_url),
            close_url=pick("CLOSE_URL", base.close_url),
            sign_url=pick("SIGN_URL", base.sign_url or "") or None,
            http_timeout=float(pick("HTTP_TIMEOUT", str(base.http_timeout))),
            poll_interval=float(pick("POLL_INTERVAL", str(base.poll_interval))),
            poll_max_attempts=int(
                pick("POLL_MAX_ATTEMPTS", str(base.poll_max_attempts))
            ),
            ledger_url=pick("LEDGER_URL", base.ledger_url),
        )


__all__ = ("Settings", "ENV_PREFIX")
