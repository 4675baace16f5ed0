"""Database integration handler.

Operations are simulated. The result shape matches what a real driver
would report for each operation.
"""

import random
from typing import Any, Dict

from core.logging import get_logger

logger = get_logger(__name__)


async def handle_database(config: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
    operation = (config.get('operation') or '').lower()
    logger.info("Executing database operation", operation=operation,
                query=config.get('query'), table=config.get('table'))

    if operation == 'query':
        return {
            "success": True,
            "message": "Query executed successfully",
            "query": config.get('query'),
            "rows": [],
            "rowCount": 0,
        }
    if operation == 'insert':
        return {
            "success": True,
            "message": "Data inserted successfully",
            "insertId": random.randint(1, 1000),
        }
    if operation in ('update', 'delete'):
        verb = "updated" if operation == 'update' else "deleted"
        return {
            "success": True,
            "message": f"Data {verb} successfully",
            "affectedRows": random.randint(1, 5),
        }

    return {
        "success": False,
        "message": f"Unsupported database operation: {operation or 'none'}",
    }
