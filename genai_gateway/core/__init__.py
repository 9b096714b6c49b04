"""
Core modules for the generation gateway.

This package contains admission control, the generation orchestrator
and usage accounting.
"""
