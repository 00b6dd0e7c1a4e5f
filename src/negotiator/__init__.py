"""Antigravity Negotiator: capability matching, recruitment and consensus for agent teams."""

__version__ = "0.1.0"
