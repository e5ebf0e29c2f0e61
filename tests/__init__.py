"""
Test suite for pgconverge.

This package contains unit tests for all pgconverge components. Database
access is replaced by a mocked connector and an in-memory catalog that
reports tables the way PostgreSQL does.
"""
