"""Vigil - scheduled job runner for the compliance dashboard."""

__app_name__ = "vigil"
__version__ = "0.3.0"
