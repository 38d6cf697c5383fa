"""Executable format parsers."""
