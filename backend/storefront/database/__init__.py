"""
Database package.

- base: declarative base and shared column mixins
- connection: async engine, session factory and health checks
- models: ORM models for products, orders, payments and order numbering
"""

__all__ = []
