"""Spin-the-wheel prize allocation service."""
