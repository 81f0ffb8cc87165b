"""Abstract base for all AI model providers."""

from abc import ABC, abstractmethod

from persona_council.models import ModelResponse


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


class AIProvider(ABC):
    """Abstract base for all AI model providers.

    Every persona in a round shares one provider; the persona's directive is
    sent as the system message and the phase prompt as the user message.
    """

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'openrouter', 'anthropic')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def generate(self, system_prompt: str, user_message: str) -> ModelResponse:
        """Generate a JSON-only response for one system/user message pair.

        Args:
            system_prompt: The persona's behavioral directive.
            user_message: The answer or vote request.

        Returns:
            ModelResponse dataclass with the raw content and metadata.

        Raises:
            ProviderError: On API failure, timeout, or empty response.
        """
        ...
