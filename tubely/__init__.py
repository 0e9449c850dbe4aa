"""Tubely: upload, fast-start remux and storage of user videos."""

__version__ = "0.1.0"
