"""Xibo Portal tests."""
