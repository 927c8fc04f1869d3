"""Domain Layer: value objects, error taxonomy, events and ports.

Nothing in here performs I/O.
"""
