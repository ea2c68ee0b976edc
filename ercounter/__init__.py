# MIT License
# Copyright (c) 2025 Hashborn

"""
Ephemeral Rollup Counter

Client engine for a counter account that moves between a base ledger and a
rollup ledger via delegation.
"""

__version__ = "0.1.0"
