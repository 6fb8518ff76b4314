"""
Test suite for Defense Line

Contains:
- tests/unit/          : Unit tests for individual modules
"""
