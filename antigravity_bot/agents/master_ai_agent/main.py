from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from ...errors import RateLimitError, SignalGenerationError
from ...logging_config import setup_logger
from ...models import ServiceStatus, SignalRequest, TradeDecision
from .client import LLMSignalGenerator

app = FastAPI(title="Master AI Agent")
logger = setup_logger("master_ai_service")

generator = LLMSignalGenerator()


class DecisionResponse(BaseModel):
    ok: bool
    decision: TradeDecision


@app.get("/health", response_model=ServiceStatus)
def health() -> ServiceStatus:
    return ServiceStatus(ok=True, details={"service": "master_ai_agent", "model": generator.model})


@app.post("/decide", response_model=DecisionResponse)
async def decide(req: SignalRequest) -> DecisionResponse:
    try:
        decision = await generator.decide(req)
    except RateLimitError as e:
        raise HTTPException(status_code=429, detail=str(e))
    except SignalGenerationError as e:
        logger.error(f"Decision failed for {req.symbol}: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return DecisionResponse(ok=True, decision=decision)
