"""
LLM Pool - prioritized, rate-limited failover pool for LLM backends.

Routes a canonical chat request to one of several backend APIs (OpenAI-style
chat completions or Anthropic-style messages), choosing by priority and
per-destination rate limit, and failing over to the next destination when a
call fails.
"""

__version__ = "1.0.0"
__author__ = "LLM Pool Team"
