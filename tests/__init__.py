"""Test suite package (lets test modules import the shared helpers)."""
