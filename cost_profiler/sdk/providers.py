from typing import Any, Callable, Dict

from cost_profiler.core.errors import UnsupportedProviderError
from cost_profiler.schemas.events import Provider

from .events import UsageData

# Top-level package that defines the client class -> provider tag.
CLIENT_PACKAGES: Dict[str, Provider] = {
    "openai": "openai",
    "anthropic": "anthropic",
    "google": "google-gemini",
}


def detect_provider(client: Any) -> Provider:
    """Classify an SDK client instance by the package its class comes from.

    Bound methods of a client resource (``client.chat.completions.create``)
    are classified by the object they are bound to.

    Raises:
        UnsupportedProviderError: for anything not built by a supported SDK.
    """

    if client is None or isinstance(client, (str, bytes, int, float, bool)):
        raise UnsupportedProviderError("Client must be an SDK client instance")
    client = getattr(client, "__self__", client)
    module = type(client).__module__ or ""
    package = module.split(".", 1)[0]
    provider = CLIENT_PACKAGES.get(package)
    if provider is None:
        raise UnsupportedProviderError(
            f"Unsupported client {type(client).__name__!r} from {module!r}: "
            "must be an OpenAI, Anthropic or Google Gemini SDK instance"
        )
    return provider


def _read(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _count(obj: Any, name: str) -> int:
    value = _read(obj, name)
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


def _openai_usage(response: Any) -> UsageData:
    usage = _read(response, "usage")
    return UsageData(
        input_tokens=_count(usage, "prompt_tokens"),
        output_tokens=_count(usage, "completion_tokens"),
        cached_tokens=_count(_read(usage, "prompt_tokens_details"), "cached_tokens"),
    )


def _anthropic_usage(response: Any) -> UsageData:
    usage = _read(response, "usage")
    return UsageData(
        input_tokens=_count(usage, "input_tokens"),
        output_tokens=_count(usage, "output_tokens"),
        cached_tokens=_count(usage, "cache_read_input_tokens"),
    )


def _gemini_usage(response: Any) -> UsageData:
    usage = _read(response, "usage_metadata")
    return UsageData(
        input_tokens=_count(usage, "prompt_token_count"),
        output_tokens=_count(usage, "candidates_token_count"),
        cached_tokens=_count(usage, "cached_content_token_count"),
    )


USAGE_EXTRACTORS: Dict[Provider, Callable[[Any], UsageData]] = {
    "openai": _openai_usage,
    "anthropic": _anthropic_usage,
    "google-gemini": _gemini_usage,
}


def extract_usage(provider: Provider, response: Any) -> UsageData:
    """Read token usage off a provider response; zero usage when it carries none."""

    extractor = USAGE_EXTRACTORS.get(provider)
    if extractor is None:
        raise UnsupportedProviderError(f"No usage extractor for provider {provider!r}")
    return extractor(response)
