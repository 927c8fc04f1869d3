"""Credential acquisition, caching and verification."""
