"""Error taxonomy.

Raw transport and SDK exceptions are translated into these at the provider
client boundary, so nothing above the clients needs provider-specific
exception handling. Every error carries the text shown to the user.
"""

from __future__ import annotations


class ChatEngineError(Exception):
    def __init__(self, user_message: str) -> None:
        super().__init__(user_message)
        self.user_message = user_message


class InvalidInput(ChatEngineError):
    """Bad user input (blank text, bad model name, duplicate download, ...)."""


class ProviderError(ChatEngineError):
    def __init__(self, provider: str, user_message: str, status_code: int | None = None) -> None:
        super().__init__(user_message)
        self.provider = provider
        self.status_code = status_code


# -- transport --------------------------------------------------------------

class TransportUnavailable(ProviderError):
    """The request never got a usable HTTP response."""


class CannotConnect(TransportUnavailable):
    def __init__(self, provider: str) -> None:
        super().__init__(provider, f"Could not connect to the {provider} server.")


class ServiceUnavailable(TransportUnavailable):
    def __init__(self, provider: str) -> None:
        super().__init__(provider, f"{provider} API services not available.")


class RequestFailed(TransportUnavailable):
    def __init__(self, provider: str) -> None:
        super().__init__(
            provider,
            "Request failed. Please check your Internet Connection or Http Proxy configuration.",
        )


# -- response ---------------------------------------------------------------

class ServiceError(ProviderError):
    """Non-2xx response."""


class RequestBuildFailure(ServiceError):
    """The request body could not be serialized locally."""

    def __init__(self, provider: str, detail: str = "") -> None:
        message = f"{provider} Error: could not build request"
        if detail:
            message += f" ({detail})"
        super().__init__(provider, message)


class MalformedResponse(ProviderError):
    def __init__(self, provider: str, user_message: str | None = None) -> None:
        super().__init__(
            provider,
            user_message or f"{provider} Response No JSON body or failed to decode.",
        )
