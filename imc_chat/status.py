"""
Health and startup status reporting.

`LlmStatusReporter` logs the active model settings once at startup so a
local setup can double check its token limits; `status` is the health
summary a transport layer would expose.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

if TYPE_CHECKING:                                        # pragma: no cover
    from imc_chat.chat_service import ChatService
    from imc_chat.config import Configuration

logger = logging.getLogger(__name__)

UNKNOWN = "UNKNOWN"


class LlmStatusReporter(BaseModel):
    """Startup summary of the active model configuration."""

    provider: str
    model: str = ""
    base_url: str = ""
    temperature: float | None = None
    max_completion_tokens: int | None = None
    context_window: int | None = None
    system_prompt: str = ""

    @classmethod
    def from_configuration(cls, configuration: Configuration) -> LlmStatusReporter:
        llm_config = configuration.get_llm_config()
        return cls(
            provider=configuration.active_provider,
            model=llm_config.get("model", ""),
            base_url=llm_config.get("base_url", ""),
            temperature=llm_config.get("temperature"),
            max_completion_tokens=llm_config.get("max_tokens"),
            context_window=llm_config.get("context_window"),
            system_prompt=configuration.get_system_prompt(),
        )

    @property
    def prompt_budget(self) -> int | None:
        """Tokens left for the prompt (context window minus completion cap)."""
        if not self.context_window or not self.max_completion_tokens:
            return None
        return self.context_window - self.max_completion_tokens

    def report(self) -> dict[str, Any]:
        """Log the status report and return the values logged."""
        prompt_lines = len(self.system_prompt.splitlines())
        summary: dict[str, Any] = {
            "provider": self.provider,
            "model": self.model or UNKNOWN,
            "base_url": self.base_url or UNKNOWN,
            "temperature": (
                f"{self.temperature:.2f}" if self.temperature is not None else UNKNOWN
            ),
            "max_completion_tokens": self.max_completion_tokens or UNKNOWN,
            "context_window": self.context_window or UNKNOWN,
            "prompt_budget": self.prompt_budget,
            "system_prompt_chars": len(self.system_prompt),
            "system_prompt_lines": prompt_lines,
        }

        logger.info("========== LLM STATUS REPORT ==========")
        logger.info(f"Provider: {summary['provider']}")
        logger.info(f"Model: {summary['model']}")
        logger.info(f"Base URL: {summary['base_url']}")
        logger.info(f"Temperature: {summary['temperature']}")
        logger.info(f"Max Completion Tokens: {summary['max_completion_tokens']}")
        logger.info(f"Context Window: {summary['context_window']}")

        budget = self.prompt_budget
        if budget is not None:
            if budget < 0:
                logger.warning(
                    f"⚠️ Completion token cap exceeds context window by "
                    f"{-budget} tokens"
                )
            else:
                logger.info(f"Prompt Budget (context - completion): {budget} tokens")

        logger.info(
            f"System Prompt: {len(self.system_prompt)} chars across "
            f"{prompt_lines} lines"
        )
        logger.info("=======================================")
        return summary


async def status(service: ChatService) -> dict[str, Any]:
    """Health summary: ``{"healthy": bool, "active_sessions": int}``."""
    try:
        healthy = await service.is_healthy()
    except Exception as e:
        logger.error(f"Health check error: {e}")
        healthy = False
    return {"healthy": healthy, "active_sessions": service.session_count()}
