from __future__ import annotations

from abc import ABC, abstractmethod

from cancellation_engine.domain.entities.cancellation_policy import CancellationPolicy


class PolicyStorePort(ABC):
    @abstractmethod
    def get(self, provider_id: str) -> CancellationPolicy:
        """
        Get the active cancellation policy for a provider.

        Raises PolicyNotFound if the provider has none, and
        PolicyConfigurationError if the stored policy is malformed.
        """
        raise NotImplementedError

    @abstractmethod
    def put(self, policy: CancellationPolicy) -> None:
        """Replace the provider's policy as a whole value."""
        raise NotImplementedError
