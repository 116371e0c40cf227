"""
Shared test fixtures for the POS core test suite.
"""
