from .client import LLMSignalGenerator, SignalGenerator, parse_decision

__all__ = ["LLMSignalGenerator", "SignalGenerator", "parse_decision"]
