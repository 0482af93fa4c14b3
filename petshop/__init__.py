"""Viiona pet shop backend: catalog, cart, checkout, payments and bookings."""

__version__ = "1.0.0"
