"""Raydium new-pool sniper: discovery, rug screening and staged exits."""

__version__ = "0.1.0"
