"""Domain Events.

Represents significant occurrences in the client (calls, retries, refreshes).
"""
