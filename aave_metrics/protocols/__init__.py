"""Lending protocol readers."""
