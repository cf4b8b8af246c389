"""Rate limiter storage adapters.

This package holds the limiter record entity and the repository abstraction
with its two interchangeable backends: an in-process dictionary and Redis.
The decision service only ever sees ``AbstractLimiterRepository``.
"""
