"""Test resource managers and their cleanup."""
