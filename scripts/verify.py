"""
Excel Verification Script

Verifies data integrity of the Excel export file.
Run from project root: python scripts/verify.py
"""

import os
import sys
from datetime import datetime

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pandas as pd  # noqa: E402

from tableside.services.excel_manager import ExcelManager  # noqa: E402

REQUIRED_COLUMNS = ["order_id", "order_number", "items", "total", "order_status"]


def verify_excel() -> bool:
    """Verify Excel file integrity after a simulation run."""
    excel_file = ExcelManager.orders_file()

    print("=" * 60)
    print("EXCEL VERIFICATION REPORT")
    print("=" * 60)
    print(f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"File: {excel_file}")
    print("=" * 60)

    if not excel_file.exists():
        print("\nExcel file not found!")
        print("   Run the simulation first: python scripts/simulate.py")
        return False

    try:
        df = pd.read_excel(excel_file, engine="openpyxl")
    except Exception as e:
        print(f"\nCould not read Excel file: {e}")
        return False

    print("\nSTATISTICS:")
    print(f"   Total Orders: {len(df)}")
    print(f"   Columns: {len(df.columns)}")

    ok = True
    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        print(f"\nMissing Columns: {missing}")
        ok = False
    else:
        print("\nAll required columns present")

    if "order_number" in df.columns:
        duplicates = df["order_number"].duplicated().sum()
        if duplicates > 0:
            print(f"\n{duplicates} duplicate order numbers found!")
            ok = False
        else:
            print("No duplicate order numbers")

    if {"subtotal", "tax", "total"} <= set(df.columns):
        mismatched = df[(df["subtotal"] + df["tax"] - df["total"]).abs() > 0.01]
        if len(mismatched) > 0:
            print(f"\n{len(mismatched)} rows where subtotal + tax != total")
            ok = False
        print("\nREVENUE:")
        print(f"   Total: ${df['total'].sum():.2f}")
        print(f"   Average: ${df['total'].mean():.2f}")

    print("\nRECENT ORDERS:")
    print("-" * 60)
    if len(df) > 0:
        cols = [c for c in ["order_number", "item_count", "total", "order_status"] if c in df.columns]
        print(df[cols].tail(5).to_string(index=False))

    print("\n" + "=" * 60)
    print("VERIFICATION COMPLETE" if ok else "VERIFICATION FOUND PROBLEMS")
    print("=" * 60)

    return ok


if __name__ == "__main__":
    sys.exit(0 if verify_excel() else 1)
