"""Pick the assessment provider, credentials and model for a checkpoint."""

from turnkeeper.checkpoint import CheckpointConfig
from turnkeeper.config import ProviderCredentials
from turnkeeper.llm import PROVIDER_SPECS, ProviderConfig
from turnkeeper.logging import get_logger

log = get_logger(__name__)

# Auto-detection probe order.
PROVIDER_PRIORITY = ("anthropic", "openai", "gemini")


def _credentials_for(provider: str, credentials: ProviderCredentials) -> tuple[str, str]:
    """Return (api_key, base_url override) for a provider."""
    if provider == "anthropic":
        return credentials.anthropic_api_key, credentials.anthropic_base_url
    if provider == "openai":
        return credentials.openai_api_key, credentials.openai_base_url
    if provider == "gemini":
        return credentials.gemini_api_key, ""
    return "", ""


def _model_for(provider: str, requested: str) -> str:
    spec = PROVIDER_SPECS[provider]
    if requested and requested.startswith(spec.model_prefix):
        return requested
    return spec.default_model


def _build(provider: str, config: CheckpointConfig, credentials: ProviderCredentials) -> ProviderConfig | None:
    api_key, base_url = _credentials_for(provider, credentials)
    if not api_key:
        return None
    return ProviderConfig(
        provider=provider,
        api_key=api_key,
        base_url=base_url or PROVIDER_SPECS[provider].default_base_url,
        model=_model_for(provider, config.model),
    )


def resolve_provider(config: CheckpointConfig, credentials: ProviderCredentials) -> ProviderConfig | None:
    """Resolve the provider for an assessment call.

    An explicit ``config.provider`` is used alone; no other backend is tried
    when its credentials are missing. Otherwise providers are probed in
    ``PROVIDER_PRIORITY`` order. A model name is kept only when it carries the
    chosen provider's prefix, else that provider's default model is used.

    Returns:
        The resolved config, or None when no credentials are available.
    """
    if config.provider:
        if config.provider not in PROVIDER_SPECS:
            log.warning("Unknown assessment provider", provider=config.provider)
            return None
        resolved = _build(config.provider, config, credentials)
        if resolved is None:
            log.debug("No credentials for explicit assessment provider", provider=config.provider)
        return resolved

    for provider in PROVIDER_PRIORITY:
        resolved = _build(provider, config, credentials)
        if resolved is not None:
            return resolved
    return None
