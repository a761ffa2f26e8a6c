"""Recurring recycle and reduce goals."""
