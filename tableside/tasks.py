"""
Celery Tasks
Background tasks for processing orders asynchronously.
"""

import logging
import time
from datetime import datetime

from tableside.celery_worker import celery_app
from tableside.services.excel_manager import ExcelManager

logger = logging.getLogger(__name__)


class ExportFailed(Exception):
    """The Excel export did not complete."""


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def export_order_to_excel(self, order_data: dict) -> dict:
    """
    Export a placed order to the Excel file.

    Args:
        order_data: Flattened order, see ``build_export_payload``

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    order_id = order_data.get('order_id', 'unknown')

    logger.info(f"Task {task_id}: exporting order #{order_id}")
    start_time = time.time()

    result = ExcelManager.export_order(order_data)

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = task_id
    result['processing_time_seconds'] = elapsed

    if not result['success']:
        logger.warning(f"Task {task_id}: order #{order_id} failed after {elapsed}s - {result['message']}")
        # Celery will auto-retry based on configuration
        raise ExportFailed(result['message'])

    logger.info(f"Task {task_id}: order #{order_id} exported in {elapsed}s")
    return result


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now().isoformat()
    }


@celery_app.task
def clear_excel_file() -> dict:
    """
    Clear the Excel file (for testing/reset purposes).
    """
    success = ExcelManager.clear_all_orders()
    return {
        'success': success,
        'message': 'Excel file cleared' if success else 'Failed to clear Excel file',
        'timestamp': datetime.now().isoformat()
    }
