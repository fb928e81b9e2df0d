"""Circulation service.

Provides functionality for:
- Book acquisition and borrower registration
- Checkout and return with availability enforcement
- Overdue fee assessment
"""

from .manager import CirculationManager, ReturnResult

__all__ = ["CirculationManager", "ReturnResult"]
