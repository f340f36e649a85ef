"""
Push provider interface and provider-agnostic send request.

Platform-specific delivery hints are computed once per send and attached to
the request; a provider translates each hint into its own wire format. New
platforms add a hint variant, not new branches in the send path.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional


class DeliveryHint:
    """Per-platform delivery options for one multicast, keyed by `platform`."""

    platform: str = ""


@dataclass(frozen=True)
class AndroidHint(DeliveryHint):
    platform = "android"
    priority: str = "high"
    channel_id: str = "default"
    sound: str = "default"


@dataclass(frozen=True)
class ApnsHint(DeliveryHint):
    platform = "ios"
    sound: str = "default"


@dataclass(frozen=True)
class WebLinkHint(DeliveryHint):
    platform = "web"
    link: Optional[str] = None


@dataclass(frozen=True)
class MulticastRequest:
    tokens: list[str]
    title: str
    body: str
    data: dict[str, str]
    hints: dict[str, DeliveryHint] = field(default_factory=dict)


@dataclass(frozen=True)
class TokenResult:
    token: str
    success: bool
    error_code: Optional[str] = None


@dataclass
class MulticastResult:
    responses: list[TokenResult]

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.responses if r.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.responses if not r.success)


class PushProvider(ABC):
    """
    Interface for push delivery backends.

    Implementations:
    - FcmPushProvider: Firebase Cloud Messaging multicast
    """

    name: str = ""

    # Error codes meaning the token will never work again
    permanent_error_codes: frozenset[str] = frozenset()

    @abstractmethod
    def is_configured(self) -> bool:
        """True when credentials are present and the client can send."""
        pass

    @abstractmethod
    async def send_multicast(self, request: MulticastRequest) -> MulticastResult:
        """
        Send one notification to every token in the request.

        Returns one TokenResult per token, in request order.
        """
        pass

    def is_permanent_failure(self, error_code: Optional[str]) -> bool:
        return bool(error_code) and error_code in self.permanent_error_codes
