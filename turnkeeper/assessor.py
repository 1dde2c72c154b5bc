"""LLM-backed judgement of whether an agent finished its task."""

import asyncio
from collections.abc import Callable, Sequence
from enum import Enum

from turnkeeper.checkpoint import CheckpointConfig
from turnkeeper.config import AssessmentConfig, ProviderCredentials
from turnkeeper.exceptions import ProviderError
from turnkeeper.llm import CompletionProvider, create_provider
from turnkeeper.llm.selector import resolve_provider
from turnkeeper.logging import get_logger

log = get_logger(__name__)

ASSESSMENT_PROMPT = """You are a task completion detector. Given the recent AI assistant output below, determine if the task is DONE or NOT_DONE.

Rules:
- DONE = explicit completion summary, all steps finished, or user-facing final report
- NOT_DONE = mid-step, partial work, no conclusion, or stopped abruptly

Respond with exactly one word: DONE or NOT_DONE"""


class Verdict(str, Enum):
    DONE = "DONE"
    NOT_DONE = "NOT_DONE"
    INDETERMINATE = "INDETERMINATE"


def build_assessment_prompt(
    recent_texts: Sequence[str],
    *,
    context_chars: int = 3000,
    separator: str = "\n---\n",
) -> str:
    """Build the assessment prompt from the tail of the recent output."""
    context = separator.join(recent_texts)
    if len(context) > context_chars:
        context = context[-context_chars:]
    return f"{ASSESSMENT_PROMPT}\n\n<recent_output>\n{context}\n</recent_output>"


class CompletionAssessor:
    """Ask a cheap model whether the recent assistant output looks finished.

    Holds no per-session state. Every failure mode (no credentials, HTTP
    error, timeout, unexpected answer) comes back as "not done".
    """

    def __init__(
        self,
        credentials: ProviderCredentials,
        settings: AssessmentConfig | None = None,
        provider_factory: Callable[[str], CompletionProvider] = create_provider,
    ):
        self.credentials = credentials
        self.settings = settings or AssessmentConfig()
        self.provider_factory = provider_factory

    async def judge(self, recent_texts: Sequence[str], config: CheckpointConfig) -> Verdict:
        """Return DONE, NOT_DONE, or INDETERMINATE when no answer could be had."""
        provider_config = resolve_provider(config, self.credentials)
        if provider_config is None:
            log.debug("No API key available for assessment, assuming not done")
            return Verdict.INDETERMINATE

        prompt = build_assessment_prompt(
            recent_texts,
            context_chars=self.settings.context_chars,
            separator=self.settings.separator,
        )

        try:
            provider = self.provider_factory(provider_config.provider)
        except ValueError as e:
            log.warning("Assessment provider unavailable", provider=provider_config.provider, error=str(e))
            return Verdict.INDETERMINATE

        try:
            log.debug("Assessing completion", provider=provider_config.provider, model=provider_config.model)
            # Hard deadline, independent of the client timeout.
            answer = await asyncio.wait_for(
                provider.call(provider_config, prompt, config.timeout_ms),
                timeout=config.timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            log.info("Assessment timed out", provider=provider_config.provider, timeout_ms=config.timeout_ms)
            return Verdict.INDETERMINATE
        except ProviderError as e:
            log.info("Assessment failed", provider=provider_config.provider, error=str(e))
            return Verdict.INDETERMINATE
        finally:
            await provider.close()

        log.debug("Assessment result", provider=provider_config.provider, answer=answer)
        if answer == Verdict.DONE.value:
            return Verdict.DONE
        if answer == Verdict.NOT_DONE.value:
            return Verdict.NOT_DONE
        return Verdict.INDETERMINATE

    async def assess(self, recent_texts: Sequence[str], config: CheckpointConfig) -> bool:
        """True only when the model answered exactly DONE."""
        return await self.judge(recent_texts, config) is Verdict.DONE
