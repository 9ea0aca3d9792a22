"""eventsync - Local replica and two-way sync engine for event management."""

__version__ = "0.1.0"
