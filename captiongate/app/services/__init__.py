"""Admission control services: rate limiting, quotas and circuit breaking."""
