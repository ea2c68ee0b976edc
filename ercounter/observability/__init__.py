# MIT License
# Copyright (c) 2025 Hashborn

"""
Observability Module

Provides Prometheus metrics for the delegation engine.
"""

from .metrics import metrics_registry, record_status

__all__ = ['metrics_registry', 'record_status']
