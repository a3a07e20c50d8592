from .engine import TradingEngine
from .gate import GateReason, GateResult, SignalGate
from .scheduler import EngineState, ScanOutcome, ScanPhase, ScanResult, ScanScheduler, ScanTimings

__all__ = [
    "EngineState",
    "GateReason",
    "GateResult",
    "ScanOutcome",
    "ScanPhase",
    "ScanResult",
    "ScanScheduler",
    "ScanTimings",
    "SignalGate",
    "TradingEngine",
]
