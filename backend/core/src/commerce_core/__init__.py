"""Transactional core for orders, payments and inventory."""

__version__ = "0.1.0"
