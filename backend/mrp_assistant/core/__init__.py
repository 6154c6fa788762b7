"""
Core application modules.
Contains logging, tracing, metrics, resilience and store connection helpers.
"""
