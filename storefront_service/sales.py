"""
sales.py — Sales Statistics for the Admin Dashboard

Everything here is recomputed from the current order statuses on each call;
nothing is cached. Only completed orders count toward revenue and rankings, so
reverting a cancelled order to completed makes it reappear immediately.
"""

from collections import defaultdict
from typing import Dict, List, Sequence

from .models import (
    Analytics,
    CategoryPerformance,
    CustomerSummary,
    DashboardStats,
    Order,
    OrderStatus,
    Product,
    ProductSales,
    SalesRanking,
)

RANKING_LIMIT = 10
TOP_CUSTOMERS_LIMIT = 10
TOP_CITIES_LIMIT = 8


def completed_orders(orders: Sequence[Order]) -> List[Order]:
    return [order for order in orders if order.status == OrderStatus.COMPLETED]


def product_sales(orders: Sequence[Order], products: Sequence[Product]) -> List[ProductSales]:
    """
    Units sold and revenue per catalog product, from completed orders.

    Revenue uses the unit price captured in each line item. Products that were
    deleted from the catalog since the order was placed are dropped. The result
    keeps first-seen order of the products.
    """
    totals: Dict[str, List[float]] = {}
    for order in completed_orders(orders):
        for item in order.items:
            entry = totals.setdefault(item.product.id, [0, 0.0])
            entry[0] += item.quantity
            entry[1] += item.quantity * item.product.price

    catalog = {product.id: product for product in products}
    return [
        ProductSales(product=catalog[product_id], units_sold=units, revenue=revenue)
        for product_id, (units, revenue) in totals.items()
        if product_id in catalog
    ]


def aggregate_sales(orders: Sequence[Order], products: Sequence[Product],
                    limit: int = RANKING_LIMIT) -> SalesRanking:
    """
    Top and least sellers by units sold.

    Ties keep the first-seen order because sorted() is stable.
    """
    sales = product_sales(orders, products)
    top = sorted(sales, key=lambda s: s.units_sold, reverse=True)[:limit]
    least = sorted(sales, key=lambda s: s.units_sold)[:limit]
    return SalesRanking(top_sellers=top, least_sellers=least)


def total_revenue(orders: Sequence[Order]) -> float:
    return sum(order.total for order in completed_orders(orders))


def dashboard_stats(orders: Sequence[Order], products: Sequence[Product]) -> DashboardStats:
    counts = defaultdict(int)
    for order in orders:
        counts[order.status] += 1

    revenue = total_revenue(orders)
    completed = counts[OrderStatus.COMPLETED]
    ranking = aggregate_sales(orders, products)
    return DashboardStats(
        total_orders=len(orders),
        total_revenue=revenue,
        avg_order_value=revenue / completed if completed else 0.0,
        pending_orders=counts[OrderStatus.PENDING],
        processing_orders=counts[OrderStatus.PROCESSING],
        completed_orders=completed,
        cancelled_orders=counts[OrderStatus.CANCELLED],
        top_sellers=ranking.top_sellers,
        least_sellers=ranking.least_sellers,
    )


def advanced_analytics(orders: Sequence[Order], products: Sequence[Product]) -> Analytics:
    """Breakdowns by month, category, customer and city (completed orders only)."""
    done = completed_orders(orders)

    monthly: Dict[str, float] = defaultdict(float)
    cities: Dict[str, float] = defaultdict(float)
    customers: Dict[str, CustomerSummary] = {}
    for order in done:
        monthly[order.created_at.strftime("%Y-%m")] += order.total
        cities[order.city] += order.total
        summary = customers.get(order.customer_name)
        if summary is None:
            customers[order.customer_name] = CustomerSummary(
                customer_name=order.customer_name, orders=1, revenue=order.total,
                last_order=order.created_at)
        else:
            summary.orders += 1
            summary.revenue += order.total
            summary.last_order = max(summary.last_order, order.created_at)

    categories: Dict[str, CategoryPerformance] = {}
    for sale in product_sales(orders, products):
        category = sale.product.category
        perf = categories.setdefault(category, CategoryPerformance(category=category, units_sold=0, revenue=0.0))
        perf.units_sold += sale.units_sold
        perf.revenue += sale.revenue

    top_customers = sorted(customers.values(), key=lambda c: c.revenue, reverse=True)[:TOP_CUSTOMERS_LIMIT]
    top_cities = dict(sorted(cities.items(), key=lambda kv: kv[1], reverse=True)[:TOP_CITIES_LIMIT])

    return Analytics(
        total_revenue=sum(order.total for order in done),
        total_orders=len(orders),
        completed_orders=len(done),
        conversion_rate=len(done) / len(orders) * 100 if orders else 0.0,
        monthly_revenue=dict(sorted(monthly.items())),
        categories=list(categories.values()),
        top_customers=top_customers,
        top_cities=top_cities,
    )
