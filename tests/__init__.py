"""
Tests Package - Unit Tests

Test structure:
- tests/unit/ - Fast, isolated unit tests (temporary SQLite, faked HTTP/browser)
- tests/conftest.py - Shared pytest fixtures
"""
