"""Room domain services: lifecycle, session assignment, scoring and leaderboards.

This package contains pure(ish) domain logic that should be imported by
HTTP routes and socket handlers, keeping transport concerns separated
from core room mechanics.
"""
