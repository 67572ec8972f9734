"""Seed and plant metadata extraction pipeline."""
