"""
                Tableside Orders

Order-management backend for dine-in restaurant ordering: guests and
customers place orders from the menu, staff move them through the kitchen
and settle payment.
"""

__version__ = "1.0.0"
