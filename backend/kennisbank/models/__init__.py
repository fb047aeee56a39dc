"""Entities and API models."""
