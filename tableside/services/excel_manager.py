"""
Excel File Manager with Concurrency Control

Appends placed orders to a spreadsheet for the back office. Several
Celery workers may export at once, so every read-modify-write of the
file happens under a file lock.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import pandas as pd
from filelock import FileLock, Timeout

from tableside.core.config import get_settings

logger = logging.getLogger(__name__)


class ExcelManager:
    """Thread-safe Excel file manager."""

    ORDER_COLUMNS = [
        "order_id",
        "order_number",
        "date_time",
        "table_id",
        "customer_id",
        "items",
        "item_count",
        "subtotal",
        "tax",
        "total",
        "order_status",
        "payment_status",
        "exported_at",
    ]

    @classmethod
    def orders_file(cls) -> Path:
        settings = get_settings()
        return Path(settings.data_directory) / settings.excel_filename

    @classmethod
    def lock_file(cls) -> Path:
        orders_file = cls.orders_file()
        return orders_file.with_name(orders_file.name + ".lock")

    @classmethod
    def _ensure_data_dir(cls) -> None:
        """Create data directory if needed."""
        data_dir = cls.orders_file().parent
        if not data_dir.exists():
            data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {data_dir}")

    @classmethod
    def _load_or_create_df(cls, file_path: Path) -> pd.DataFrame:
        """Load existing file or create new DataFrame."""
        if file_path.exists():
            try:
                return pd.read_excel(file_path, engine="openpyxl")
            except Exception as e:
                logger.warning(f"Error reading {file_path}: {e}")
        return pd.DataFrame(columns=cls.ORDER_COLUMNS)

    @staticmethod
    def _format_items(items: Any) -> str:
        if isinstance(items, str):
            return items
        return "; ".join(
            f"{item.get('quantity', 1)}x {item.get('name')} @ {item.get('price')}"
            + (f" ({item['note']})" if item.get("note") else "")
            for item in items or []
        )

    @classmethod
    def export_order(cls, order_data: dict[str, Any]) -> dict[str, Any]:
        """Append one order row to the Excel file under the file lock."""
        cls._ensure_data_dir()
        settings = get_settings()

        order_id = order_data.get("order_id", 0)
        result = {
            "success": False,
            "message": "",
            "order_id": order_id,
            "exported_at": None,
        }

        orders_file = cls.orders_file()
        try:
            lock = FileLock(str(cls.lock_file()), timeout=settings.excel_lock_timeout)

            with lock:
                logger.debug(f"Lock acquired for Order #{order_id}")

                df = cls._load_or_create_df(orders_file)

                items = order_data.get("items") or []
                if isinstance(items, str):
                    items = json.loads(items)

                export_time = datetime.now().isoformat()
                new_row = {
                    "order_id": order_id,
                    "order_number": order_data.get("order_number"),
                    "date_time": order_data.get("created_at", export_time),
                    "table_id": order_data.get("table_id"),
                    "customer_id": order_data.get("customer_id"),
                    "items": cls._format_items(items),
                    "item_count": sum(int(item.get("quantity", 1)) for item in items),
                    "subtotal": order_data.get("subtotal"),
                    "tax": order_data.get("tax"),
                    "total": order_data.get("total"),
                    "order_status": order_data.get("order_status"),
                    "payment_status": order_data.get("payment_status"),
                    "exported_at": export_time,
                }

                df = pd.concat([df, pd.DataFrame([new_row])], ignore_index=True)
                df.to_excel(str(orders_file), index=False, engine="openpyxl")

                logger.info(f"Order #{order_id} exported to Excel")

                result["success"] = True
                result["message"] = f"Order #{order_id} exported"
                result["exported_at"] = export_time

            logger.debug(f"Lock released for Order #{order_id}")

        except Timeout:
            result["message"] = f"Lock timeout ({settings.excel_lock_timeout}s)"
            logger.error(f"Lock timeout for Order #{order_id}")

        except Exception as e:
            result["message"] = str(e)
            logger.exception(f"Error exporting Order #{order_id}")

        return result

    @classmethod
    def get_all_orders(cls) -> list[dict[str, Any]]:
        """Get all exported orders."""
        orders_file = cls.orders_file()
        if not orders_file.exists():
            return []

        try:
            df = pd.read_excel(orders_file, engine="openpyxl")
            return df.to_dict("records")
        except Exception as e:
            logger.error(f"Error reading orders: {e}")
            return []

    @classmethod
    def clear_all_orders(cls) -> bool:
        """Delete the export and its lock file."""
        try:
            for f in [cls.orders_file(), cls.lock_file()]:
                if f.exists():
                    f.unlink()
            logger.info("Excel export cleared")
            return True
        except OSError as e:
            logger.error(f"Error clearing files: {e}")
            return False
