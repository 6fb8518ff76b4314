"""
Core domain models, fixed-point primitives, errors and configuration.

This module contains the foundational building blocks that are independent
of external systems (price feeds, wallets, storage).
"""
