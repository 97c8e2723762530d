"""Lucky draw backend: prize plans, cycle resets, orders and winner draws."""

__version__ = "1.0.0"
