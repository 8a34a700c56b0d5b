"""
slotbook - Conflict-free bookings against a local store and an external calendar.
"""

__version__ = "0.1.0"
