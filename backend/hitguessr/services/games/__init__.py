"""Game domain services: scoring, round clocks, room sessions and storage.

HTTP routes and socket handlers go through the coordinator in this package,
keeping transport concerns separated from core game mechanics.
"""
