"""Autonomous leveraged paper-trading agent over streaming crypto prices."""

__version__ = "0.1.0"
