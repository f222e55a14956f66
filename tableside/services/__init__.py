"""
                        Services Module

Business logic behind the API routes.

Services:
    - orders: order placement and lifecycle transitions
    - catalog: dining table and menu lookups
    - excel_manager: file-locked Excel export of placed orders
"""

from tableside.services.excel_manager import ExcelManager

__all__ = ["ExcelManager"]
