from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from ..errors import PositionNotFoundError, PriceUnavailableError
from ..logging_config import setup_logger
from ..models import OrderBook, ServiceStatus, TradeDecision, TradeResult
from .engine import TradingEngine
from .scheduler import EngineState, ScanResult

app = FastAPI(title="Antigravity Orchestrator")
logger = setup_logger("orchestrator")

engine = TradingEngine()


class CloseRequest(BaseModel):
    symbol: str


class AutoModeRequest(BaseModel):
    enabled: bool


class SymbolRequest(BaseModel):
    symbol: str


class PortfolioResponse(BaseModel):
    balance: float
    margin_in_use: float
    equity: float
    bankrupt: bool
    positions: List[Dict[str, Any]]
    history: List[Dict[str, Any]]


class SimpleResponse(BaseModel):
    ok: bool
    detail: str
    extra: Optional[Dict[str, Any]] = None


class ScanResponse(BaseModel):
    result: ScanResult
    decision: Optional[TradeDecision] = None
    state: EngineState


@app.get("/health", response_model=ServiceStatus)
def health() -> ServiceStatus:
    state = engine.scheduler.snapshot()
    return ServiceStatus(
        ok=True,
        details={"service": "orchestrator", "symbol": state.active_symbol, "auto": state.is_auto_mode},
    )


@app.get("/state", response_model=EngineState)
def get_state() -> EngineState:
    return engine.scheduler.snapshot()


@app.get("/portfolio", response_model=PortfolioResponse)
def get_portfolio(limit: int = 50) -> PortfolioResponse:
    return PortfolioResponse(**engine.portfolio(history_limit=limit))


@app.get("/order_book", response_model=OrderBook)
def get_order_book(symbol: Optional[str] = None) -> OrderBook:
    symbol = (symbol or engine.scheduler.state.active_symbol).upper()
    book = engine.order_books.get(symbol)
    if book is None:
        raise HTTPException(status_code=404, detail=f"No order book for {symbol}")
    return book


@app.post("/close_position", response_model=TradeResult)
async def close_position(req: CloseRequest) -> TradeResult:
    symbol = req.symbol.upper()
    logger.info(f"▶️ Manual CLOSE {symbol}")
    try:
        return engine.manual_close(symbol)
    except PriceUnavailableError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PositionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.post("/scan", response_model=ScanResponse)
async def scan_now() -> ScanResponse:
    logger.info(f"▶️ Manual scan {engine.scheduler.state.active_symbol}")
    outcome = await engine.scheduler.request_scan()
    return ScanResponse(result=outcome.result, decision=outcome.decision, state=engine.scheduler.snapshot())


@app.post("/auto_mode", response_model=EngineState)
async def set_auto_mode(req: AutoModeRequest) -> EngineState:
    engine.scheduler.set_auto_mode(req.enabled)
    return engine.scheduler.snapshot()


@app.post("/symbol", response_model=EngineState)
async def select_symbol(req: SymbolRequest) -> EngineState:
    try:
        await engine.scheduler.select_symbol(req.symbol)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return engine.scheduler.snapshot()


@app.post("/reset", response_model=SimpleResponse)
async def reset_account() -> SimpleResponse:
    engine.reset()
    logger.info("♻️ Account reset requested")
    return SimpleResponse(ok=True, detail="Account reset", extra={"balance": engine.ledger.balance})


@app.on_event("startup")
async def on_startup():
    await engine.start()


@app.on_event("shutdown")
async def on_shutdown():
    await engine.stop()
