"""
Sales Reports and Excel Export

- sales_summary(): revenue of completed orders, overall and for the
  current day, week, month and year (UTC)
- export_orders(): writes every order to an Excel workbook under a
  file lock, for back-office use

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from filelock import FileLock, Timeout

from tablekeeper.schemas import Order, OrderStatus, SalesSummary
from tablekeeper.storage import DualStoreCoordinator, utcnow

logger = logging.getLogger(__name__)


class ReportService:
    """Read-only reporting over the order store."""

    ORDER_COLUMNS = [
        "order_id",
        "created_at",
        "updated_at",
        "customer_name",
        "customer_email",
        "order_type",
        "table_number",
        "items",
        "notes",
        "discount",
        "total",
        "status",
        "exported_at",
    ]

    def __init__(
        self,
        orders: DualStoreCoordinator[Order],
        data_dir: Path,
        excel_filename: str = "orders.xlsx",
        lock_timeout: float = 30,
    ):
        self.orders = orders
        self.data_dir = Path(data_dir)
        self.excel_path = self.data_dir / excel_filename
        self.lock_path = self.data_dir / f"{excel_filename}.lock"
        self.lock_timeout = lock_timeout

    async def sales_summary(self, now: Optional[datetime] = None) -> SalesSummary:
        """Revenue of completed orders, bucketed by the time they were completed."""
        completed = await self.orders.find_all({"status": OrderStatus.COMPLETED})
        now = pd.Timestamp(now or utcnow())

        if not completed:
            return SalesSummary(total=0.0, daily=0.0, weekly=0.0, monthly=0.0, yearly=0.0, completed_orders=0)

        df = pd.DataFrame(
            [{"total": o.total, "completed_at": o.updated_at} for o in completed]
        )
        df["completed_at"] = pd.to_datetime(df["completed_at"], utc=True)
        now = now.tz_convert("UTC") if now.tzinfo else now.tz_localize("UTC")

        day_start = now.normalize()
        week_start = day_start - pd.Timedelta(days=day_start.weekday())
        month_start = day_start.replace(day=1)
        year_start = day_start.replace(month=1, day=1)

        def revenue_since(start: pd.Timestamp) -> float:
            return round(float(df.loc[df["completed_at"] >= start, "total"].sum()), 2)

        return SalesSummary(
            total=round(float(df["total"].sum()), 2),
            daily=revenue_since(day_start),
            weekly=revenue_since(week_start),
            monthly=revenue_since(month_start),
            yearly=revenue_since(year_start),
            completed_orders=len(df),
        )

    def _ensure_data_dir(self) -> None:
        """Create data directory if needed."""
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.data_dir}")

    def _order_row(self, order: Order, export_time: str) -> dict[str, Any]:
        return {
            "order_id": order.id,
            "created_at": order.created_at.isoformat(),
            "updated_at": order.updated_at.isoformat(),
            "customer_name": order.customer_name,
            "customer_email": order.customer_email,
            "order_type": order.order_type.value,
            "table_number": order.table_number,
            "items": ", ".join(f"{i.quantity}x {i.name}" for i in order.items),
            "notes": order.notes,
            "discount": order.discount,
            "total": order.total,
            "status": order.status.value,
            "exported_at": export_time,
        }

    def write_workbook(self, orders: list[Order]) -> dict[str, Any]:
        """Replace the workbook with the given orders, holding the file lock."""
        self._ensure_data_dir()
        result = {
            "success": False,
            "message": "",
            "rows": 0,
            "path": str(self.excel_path),
            "exported_at": None,
        }

        try:
            with FileLock(str(self.lock_path), timeout=self.lock_timeout):
                logger.debug(f"Lock acquired for {self.excel_path.name}")

                export_time = utcnow().isoformat()
                df = pd.DataFrame(
                    [self._order_row(o, export_time) for o in orders],
                    columns=self.ORDER_COLUMNS,
                )
                df.to_excel(str(self.excel_path), index=False, engine="openpyxl")

                result["success"] = True
                result["rows"] = len(df)
                result["message"] = f"{len(df)} orders exported"
                result["exported_at"] = export_time

            logger.info(f"{result['rows']} orders exported to {self.excel_path}")

        except Timeout:
            result["message"] = f"Lock timeout ({self.lock_timeout}s)"
            logger.error(f"Lock timeout for {self.excel_path.name}")

        return result

    async def export_orders(self) -> dict[str, Any]:
        orders = await self.orders.find_all()
        return await asyncio.to_thread(self.write_workbook, orders)
