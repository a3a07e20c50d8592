from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from ...config import HISTORY_LIMIT, PRIMARY_INTERVAL
from ...logging_config import setup_logger
from ...market_data import BinanceMarketData
from ...models import IndicatorSnapshot, ServiceStatus
from .snapshot import build_snapshot

app = FastAPI(title="Technical Analyzer - Binance")
logger = setup_logger("technical_analyzer")

market = BinanceMarketData()


class AnalyzeRequest(BaseModel):
    symbol: str
    interval: str = PRIMARY_INTERVAL
    limit: int = HISTORY_LIMIT


class AnalyzeResponse(BaseModel):
    ok: bool
    symbol: str
    interval: str
    candles: int
    indicators: IndicatorSnapshot


@app.get("/health", response_model=ServiceStatus)
def health() -> ServiceStatus:
    return ServiceStatus(ok=True, details={"service": "technical_analyzer"})


@app.post("/analyze", response_model=AnalyzeResponse)
async def analyze(req: AnalyzeRequest) -> AnalyzeResponse:
    symbol = req.symbol.upper()
    logger.info(f"Analyzing {symbol} @ {req.interval}, limit={req.limit}")
    candles = await market.fetch_history(symbol, req.interval, req.limit)
    if not candles:
        logger.warning(f"No data for {symbol}")
        raise HTTPException(status_code=400, detail="No data")

    snapshot = build_snapshot(candles)
    if snapshot is None:
        raise HTTPException(status_code=422, detail=f"Not enough history ({len(candles)} candles)")

    return AnalyzeResponse(
        ok=True,
        symbol=symbol,
        interval=req.interval,
        candles=len(candles),
        indicators=snapshot,
    )
