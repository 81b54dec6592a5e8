"""Approval routing and decision engine for employee expenses."""

__version__ = "0.1.0"
