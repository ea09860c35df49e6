"""
SpAI backend.

Chat, recipe and travel-itinerary generation on top of a text-completion
backend, guarded by rate limiting, caching, retries, circuit breaking and
bounded-timeout async execution.
"""
