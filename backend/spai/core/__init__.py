"""
Core application modules.
Contains configuration, logging, metrics and the resilience primitives
(rate limiter, response cache, retry policy, circuit breaker, async gateway).
"""
