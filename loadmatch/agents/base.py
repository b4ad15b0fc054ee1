"""
Base class for LLM-backed advisory agents.

Provides common functionality:
- Anthropic/OpenAI client setup with per-model request timeouts
- Primary/fallback model selection from llms.json
- JSON extraction from model replies
- Decision tracking
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

import structlog
from anthropic import Anthropic
from openai import OpenAI
from pydantic import BaseModel

from loadmatch.core.config import ConfigManager, LLMModelConfig, get_config
from loadmatch.core.errors import AdvisoryFailure


class AgentDecision(BaseModel):
    """Record of one advisory answer, kept for auditing."""

    timestamp: datetime
    agent_name: str
    decision_type: str
    input_data: dict[str, Any]
    reasoning: str
    confidence: float  # 0.0 to 1.0
    output_data: dict[str, Any]
    model: str
    execution_time_seconds: float


class BaseAgent(ABC):
    """
    Base class for advisory agents.

    Agents answer questions the deterministic engines can also answer on
    their own, so every failure surfaces as AdvisoryFailure and the caller
    falls back.
    """

    def __init__(
        self,
        agent_name: str,
        config_manager: Optional[ConfigManager] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """
        Initialize the agent.

        Args:
            agent_name: Key under agent_assignments in llms.json
            config_manager: Optional config manager (defaults to global instance)
            logger: Optional structured logger
        """
        self.agent_name = agent_name
        self.config_manager = config_manager or get_config()
        self.logger = logger or structlog.get_logger(agent_name=agent_name)

        self.llm_config = self.config_manager.get_agent_llm_config(agent_name)

        self._clients: dict[str, Anthropic | OpenAI] = {}
        self.decision_history: list[AgentDecision] = []

        self.logger.info(
            "agent_initialized",
            primary_model=self.llm_config.primary_model.model,
            fallback_model=self.llm_config.fallback_model.model if self.llm_config.fallback_model else None,
        )

    def model_config_for(self, use_fallback: bool = False) -> LLMModelConfig:
        """Primary model config, or the fallback when asked and configured."""
        if use_fallback and self.llm_config.fallback_model is not None:
            return self.llm_config.fallback_model
        return self.llm_config.primary_model

    def get_client(self, model_config: LLMModelConfig) -> Anthropic | OpenAI:
        """
        Get or create the client for a model's provider.

        Raises:
            AdvisoryFailure: If the provider is unknown or its API key is missing
        """
        provider = model_config.provider.lower()
        key = f"{provider}:{model_config.timeout_seconds}"
        if key in self._clients:
            return self._clients[key]

        api_key = self.config_manager.get_api_key(provider)
        if provider == "anthropic":
            if not api_key:
                raise AdvisoryFailure("ANTHROPIC_API_KEY not set in environment")
            client = Anthropic(api_key=api_key, timeout=model_config.timeout_seconds, max_retries=0)
        elif provider == "openai":
            if not api_key:
                raise AdvisoryFailure("OPENAI_API_KEY not set in environment")
            client = OpenAI(api_key=api_key, timeout=model_config.timeout_seconds, max_retries=0)
        else:
            raise AdvisoryFailure(f"Unsupported provider: {model_config.provider}")

        self._clients[key] = client
        return client

    def call_llm(self, prompt: str, system_prompt: Optional[str] = None, **kwargs: Any) -> tuple[str, str]:
        """
        Ask the primary model, then the fallback model if the primary fails.

        Args:
            prompt: User prompt
            system_prompt: Optional system prompt (defaults to the agent's template)
            **kwargs: Overrides for temperature / max_tokens

        Returns:
            (reply text, model name that answered)

        Raises:
            AdvisoryFailure: If every configured model failed
        """
        models = [self.model_config_for()]
        if self.llm_config.fallback_model is not None:
            models.append(self.llm_config.fallback_model)

        last_error: Optional[Exception] = None
        for model_config in models:
            try:
                return self._call_model(model_config, prompt, system_prompt, **kwargs), model_config.model
            except Exception as e:
                last_error = e
                self.logger.error(
                    "llm_call_failed",
                    provider=model_config.provider,
                    model=model_config.model,
                    error=str(e),
                )

        raise AdvisoryFailure(f"All models failed for {self.agent_name}: {last_error}") from last_error

    def _call_model(
        self,
        model_config: LLMModelConfig,
        prompt: str,
        system_prompt: Optional[str],
        **kwargs: Any,
    ) -> str:
        system_prompt = system_prompt or self.llm_config.system_prompt_template
        call_kwargs = {
            "temperature": model_config.temperature,
            "max_tokens": model_config.max_tokens,
            **kwargs,
        }
        client = self.get_client(model_config)

        self.logger.info(
            "calling_llm",
            provider=model_config.provider,
            model=model_config.model,
            prompt_length=len(prompt),
        )

        if isinstance(client, Anthropic):
            response = client.messages.create(
                model=model_config.model,
                system=system_prompt,
                messages=[{"role": "user", "content": prompt}],
                **call_kwargs,
            )
            return response.content[0].text

        response = client.chat.completions.create(
            model=model_config.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            **call_kwargs,
        )
        return response.choices[0].message.content or ""

    def parse_json_reply(self, reply: str) -> Any:
        """
        Extract JSON from a model reply, with or without markdown fences.

        Raises:
            AdvisoryFailure: If the reply holds no valid JSON
        """
        text = reply
        if "```json" in text:
            start = text.find("```json") + 7
            end = text.find("```", start)
            text = text[start:end].strip()
        elif "```" in text:
            start = text.find("```") + 3
            end = text.find("```", start)
            text = text[start:end].strip()

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise AdvisoryFailure(f"Model reply is not valid JSON: {e}") from e

    def log_decision(self, decision: AgentDecision) -> None:
        self.decision_history.append(decision)
        self.logger.info(
            "agent_decision",
            decision_type=decision.decision_type,
            confidence=decision.confidence,
            model=decision.model,
            execution_time=decision.execution_time_seconds,
        )

    def export_decisions(self, filepath: str) -> None:
        """
        Export decision history to a JSON file.

        Args:
            filepath: Path to output JSON file
        """
        with open(filepath, "w") as f:
            json.dump([d.model_dump(mode="json") for d in self.decision_history], f, indent=2, default=str)

        self.logger.info("decisions_exported", filepath=filepath, count=len(self.decision_history))

    @abstractmethod
    def execute(self, *args: Any, **kwargs: Any) -> Any:
        """Run the agent's primary function."""

    def __repr__(self) -> str:
        """String representation of the agent."""
        return f"{self.__class__.__name__}(agent_name='{self.agent_name}')"
