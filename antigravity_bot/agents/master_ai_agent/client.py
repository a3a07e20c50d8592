import json
from typing import Any, Dict, Optional, Protocol

import httpx
from pydantic import ValidationError

from ...config import (
    LLM_API_KEY,
    LLM_BASE_URL,
    LLM_MODEL,
    LLM_TEMPERATURE,
    LLM_TIMEOUT_SECONDS,
    PRIMARY_INTERVAL,
)
from ...errors import RateLimitError, SignalGenerationError
from ...logging_config import setup_logger
from ...models import SignalRequest, TradeDecision
from ..technical_analyzer.snapshot import quant_metrics
from .prompt import SYSTEM_PROMPT, build_user_prompt

logger = setup_logger("master_ai_agent")


class SignalGenerator(Protocol):
    async def decide(self, request: SignalRequest) -> TradeDecision: ...


def _strip_fences(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def parse_decision(raw: str) -> TradeDecision:
    """Decode the model's JSON into a clamped TradeDecision."""
    try:
        data = json.loads(_strip_fences(raw))
    except json.JSONDecodeError as e:
        logger.error(f"JSON parse error: {e} | raw={raw[:200]}")
        raise SignalGenerationError("Invalid JSON from LLM") from e
    if not isinstance(data, dict):
        raise SignalGenerationError("LLM answer is not a JSON object")

    targets = data.get("targets") or {}
    if not isinstance(targets, dict):
        targets = {}

    fields: Dict[str, Any] = {
        "action": data.get("action", "WAIT"),
        "confidence": data.get("confidence", 0),
        "leverage": data.get("leverage", 1),
        "stop_loss": targets.get("stopLoss", data.get("stop_loss", 0)),
        "take_profit": targets.get("takeProfit", data.get("take_profit", 0)),
        "reasoning": data.get("reasoning", data.get("reason", "")),
    }
    try:
        return TradeDecision(**fields)
    except ValidationError as e:
        raise SignalGenerationError(f"Unusable decision: {e}") from e


class LLMSignalGenerator:
    """Signal generator backed by an OpenAI-compatible chat-completions endpoint."""

    def __init__(
        self,
        api_key: str = LLM_API_KEY,
        base_url: str = LLM_BASE_URL,
        model: str = LLM_MODEL,
        temperature: float = LLM_TEMPERATURE,
        timeout: float = LLM_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.temperature = temperature
        self.timeout = timeout
        self.transport = transport

    async def decide(self, request: SignalRequest) -> TradeDecision:
        if not self.api_key:
            raise SignalGenerationError("Missing LLM_API_KEY")

        logger.info(f"Requesting decision for {request.symbol}, balance={request.balance:.2f}")
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(request)},
            ],
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(
                    self.base_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=payload,
                )
        except httpx.HTTPError as e:
            logger.error(f"LLM transport error: {e}")
            raise SignalGenerationError(f"LLM request failed: {e}") from e

        if r.status_code == 429:
            logger.warning(f"LLM rate limited | {r.text[:200]}")
            raise RateLimitError("LLM quota exhausted (429)")
        if r.status_code != 200:
            logger.error(f"LLM error {r.status_code} | {r.text[:300]}")
            raise SignalGenerationError(f"LLM request failed with status {r.status_code}")

        try:
            content = r.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise SignalGenerationError("Malformed LLM response envelope") from e

        decision = parse_decision(content or "")
        primary = request.snapshots.get(PRIMARY_INTERVAL)
        if primary is not None:
            decision.quant_metrics = quant_metrics(primary)

        logger.info(
            f"Decision for {request.symbol}: {decision.action.value} "
            f"conf={decision.confidence:.0f} x{decision.leverage}"
        )
        return decision
