"""Dividend yields and income summaries."""
