"""API Resilience Implementations.

Contains the service that retries transient failures with exponential
backoff.
Bounded Context: API Resilience
"""
