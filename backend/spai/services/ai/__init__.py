"""
AI request orchestration.

Every call to the text-completion backend goes through the same ordered
chain: input normalization, admission control, response cache, and a
resilient (retry + circuit breaker + fallback) invocation. The
orchestrator exposes one synchronous and one asynchronous entry point
per domain (chat, chat options, recipe, travel).
"""
