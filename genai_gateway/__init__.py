"""
Generation gateway.

Rate-limited, audited access to an OpenAI-compatible generation API.
"""

__version__ = "0.1.0"
