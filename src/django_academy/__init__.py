"""Transactional commerce and exam seat reservation apps for Django."""

__version__ = "0.1.0"
