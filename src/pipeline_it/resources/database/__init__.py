"""Relational database resources."""
