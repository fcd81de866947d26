"""
Multi-chain ERC20 balance tracker with time-weighted loyalty points.
"""

__version__ = "0.1.0"
