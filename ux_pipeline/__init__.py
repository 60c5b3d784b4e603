"""Staged, budget-constrained UX analysis pipeline for UI screenshots."""

__version__ = "0.1.0"
