"""Utility modules for SkewAlign."""
