# dashboard.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from customers import CustomerDirectory, buyer_email, month_bounds, now_utc, order_total, round2

logger = logging.getLogger("etms.dashboard")


def growth_rate(current: float, previous: float) -> float:
    """Month-over-month change in percent.

    A zero baseline has no ratio: any activity counts as 100% growth and no
    activity as 0%.
    """
    if previous > 0:
        return round2((current - previous) / previous * 100)
    return 100.0 if current > 0 else 0.0


@dataclass
class PeriodStats:
    revenue: float = 0.0
    orders: int = 0
    customers: int = 0

    @classmethod
    def from_orders(cls, orders: List[Dict[str, Any]]) -> "PeriodStats":
        emails = {buyer_email(o) for o in orders}
        emails.discard("")
        return cls(
            revenue=sum(order_total(o) for o in orders),
            orders=len(orders),
            customers=len(emails),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {"revenue": round2(self.revenue), "orders": self.orders, "customers": self.customers}


def _sku(product: Dict[str, Any]) -> str:
    return product.get("sku") or product.get("productCode") or (product.get("name") or "")[:6].upper()


class DashboardService:
    def __init__(
        self,
        repository,
        directory: CustomerDirectory,
        low_stock_threshold: int = 10,
        recent_orders_limit: int = 5,
    ):
        self.repository = repository
        self.directory = directory
        self.low_stock_threshold = low_stock_threshold
        self.recent_orders_limit = recent_orders_limit

    def monthly_stats(self, now: Optional[datetime] = None) -> Dict[str, PeriodStats]:
        this_month, last_month = month_bounds(now or now_utc())
        current = self.repository.settled_orders(since=this_month, identified=False)
        previous = self.repository.settled_orders(since=last_month, until=this_month, identified=False)
        return {"thisMonth": PeriodStats.from_orders(current), "lastMonth": PeriodStats.from_orders(previous)}

    def insights(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        periods = self.monthly_stats(now)
        cur, prev = periods["thisMonth"], periods["lastMonth"]
        return {
            "thisMonth": cur.as_dict(),
            "lastMonth": prev.as_dict(),
            "growth": {
                "revenue": growth_rate(cur.revenue, prev.revenue),
                "orders": growth_rate(cur.orders, prev.orders),
                "customers": growth_rate(cur.customers, prev.customers),
            },
        }

    def stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or now_utc()
        repo = self.repository

        total_orders = repo.count_settled_orders()
        total_revenue = repo.settled_revenue()
        low_stock = repo.low_stock_products(self.low_stock_threshold, limit=5)
        analytics = self.directory.analytics(now)
        insights = self.insights(now)

        return {
            "overview": {
                "totalProducts": repo.count_products(),
                "totalCustomers": repo.count_customers(),
                "totalOrders": total_orders,
                "totalRevenue": round2(total_revenue),
                "averageOrderValue": round2(total_revenue / total_orders) if total_orders else 0.0,
                "recycledProducts": repo.count_products(deleted=True),
            },
            "recentOrders": [
                {
                    "id": str(o.get("_id")),
                    "orderNumber": o.get("orderNumber"),
                    "customerName": (o.get("customerInfo") or {}).get("name") or "Unknown",
                    "customerEmail": buyer_email(o),
                    "total": order_total(o),
                    "status": o.get("paymentStatus"),
                    "date": o.get("createdAt"),
                    "items": len(o.get("items") or []),
                }
                for o in repo.recent_settled_orders(self.recent_orders_limit)
            ],
            "stockInsights": {
                "lowStockCount": len(low_stock),
                "lowStockProducts": [
                    {
                        "id": str(p.get("_id")),
                        "name": p.get("name", ""),
                        "quantity": p.get("quantity", 0),
                        "sku": _sku(p),
                    }
                    for p in low_stock
                ],
            },
            "customersByType": dict(analytics.customers_by_type),
            "performance": {
                "lowStockAlert": len(low_stock) > 0,
                "revenueGrowth": insights["growth"]["revenue"],
                "orderTrend": insights["growth"]["orders"],
                "customerGrowth": insights["growth"]["customers"],
                "newCustomersThisMonth": analytics.new_customers_this_month,
                "newCustomersLastMonth": analytics.new_customers_last_month,
            },
        }
