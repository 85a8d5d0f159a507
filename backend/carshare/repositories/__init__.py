# backend/carshare/repositories/__init__.py
"""
Repository layer for the carshare backend.

Repositories wrap SQLAlchemy queries for one aggregate each and are built
through ``RepositoryFactory`` so services never construct queries inline.
Row locks (``SELECT ... FOR UPDATE``) are requested here and only applied
on databases that support them.
"""
