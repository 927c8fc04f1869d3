"""Core Application Layer: Orchestrates use cases and application logic.

Contains the card tool facade used by the tool registry and the CLI
command handler.
"""
