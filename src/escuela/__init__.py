"""Escuela Bíblica - learning-management backend."""

__version__ = "0.1.0"
