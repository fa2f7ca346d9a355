from datetime import datetime, timezone

from storefront_service.models import OrderStatus
from storefront_service.sales import advanced_analytics, aggregate_sales, dashboard_stats, total_revenue

from factories import catalog_product, order_of

A = catalog_product("a", 80)
B = catalog_product("b", 150)
C = catalog_product("c", 25, category="مستحضرات")


def test_only_completed_orders_count():
    orders = [
        order_of([(A, 5)], status=OrderStatus.PENDING),
        order_of([(A, 5)], status=OrderStatus.CANCELLED),
        order_of([(A, 5)], status=OrderStatus.PROCESSING),
        order_of([(B, 1)]),
    ]

    ranking = aggregate_sales(orders, [A, B])

    assert [s.product.id for s in ranking.top_sellers] == ["b"]
    assert total_revenue(orders) == 150


def test_revenue_uses_price_at_order_time():
    order = order_of([(A, 2)])
    repriced = catalog_product("a", 999)

    ranking = aggregate_sales([order], [repriced])

    assert ranking.top_sellers[0].revenue == 160
    assert ranking.top_sellers[0].product.price == 999


def test_rankings_sorted_and_capped_at_ten():
    products = [catalog_product(f"p{i}", 10) for i in range(15)]
    orders = [order_of([(p, i + 1)]) for i, p in enumerate(products)]

    ranking = aggregate_sales(orders, products)

    top_units = [s.units_sold for s in ranking.top_sellers]
    least_units = [s.units_sold for s in ranking.least_sellers]
    assert len(top_units) == 10 and len(least_units) == 10
    assert top_units == sorted(top_units, reverse=True)
    assert least_units == sorted(least_units)
    assert top_units[0] == 15 and least_units[0] == 1


def test_deleted_products_are_dropped():
    orders = [order_of([(A, 1), (B, 2)])]

    ranking = aggregate_sales(orders, [A])

    assert [s.product.id for s in ranking.top_sellers] == ["a"]


def test_ties_keep_first_seen_order():
    orders = [order_of([(B, 2)]), order_of([(A, 2)]), order_of([(C, 2)])]

    ranking = aggregate_sales(orders, [A, B, C])

    assert [s.product.id for s in ranking.top_sellers] == ["b", "a", "c"]
    assert [s.product.id for s in ranking.least_sellers] == ["b", "a", "c"]


def test_quantities_accumulate_across_orders():
    orders = [order_of([(A, 2), (B, 1)]), order_of([(A, 3)])]

    top = aggregate_sales(orders, [A, B]).top_sellers

    assert (top[0].product.id, top[0].units_sold, top[0].revenue) == ("a", 5, 400)
    assert (top[1].product.id, top[1].units_sold, top[1].revenue) == ("b", 1, 150)


def test_reverted_cancellation_counts_like_always_completed():
    reverted = order_of([(A, 2)], status=OrderStatus.CANCELLED)
    before = dashboard_stats([reverted], [A])
    assert before.total_revenue == 0 and before.top_sellers == []

    reverted.status = OrderStatus.COMPLETED
    always = order_of([(A, 2)])

    after = dashboard_stats([reverted], [A])
    reference = dashboard_stats([always], [A])
    assert after.total_revenue == reference.total_revenue == 160
    assert after.top_sellers == reference.top_sellers


def test_dashboard_counts_and_average():
    orders = [
        order_of([(A, 1)]),
        order_of([(B, 1)]),
        order_of([(A, 1)], status=OrderStatus.PENDING),
        order_of([(A, 1)], status=OrderStatus.CANCELLED),
    ]

    stats = dashboard_stats(orders, [A, B])

    assert stats.total_orders == 4
    assert stats.completed_orders == 2
    assert stats.pending_orders == 1
    assert stats.cancelled_orders == 1
    assert stats.total_revenue == 230
    assert stats.avg_order_value == 115


def test_dashboard_without_completed_orders():
    stats = dashboard_stats([order_of([(A, 1)], status=OrderStatus.PENDING)], [A])
    assert stats.avg_order_value == 0


def test_advanced_analytics_breakdowns():
    may = datetime(2024, 5, 3, tzinfo=timezone.utc)
    june = datetime(2024, 6, 9, tzinfo=timezone.utc)
    orders = [
        order_of([(A, 1)], customer="سامي", city="كفر قاسم", created_at=may),
        order_of([(C, 4)], customer="سامي", city="الطيبة", created_at=june),
        order_of([(B, 1)], customer="خالد", city="كفر قاسم", created_at=june),
        order_of([(B, 3)], status=OrderStatus.CANCELLED, customer="خالد"),
    ]

    analytics = advanced_analytics(orders, [A, B, C])

    assert analytics.total_orders == 4
    assert analytics.completed_orders == 3
    assert analytics.conversion_rate == 75
    assert analytics.monthly_revenue == {"2024-05": 80, "2024-06": 250}
    assert analytics.top_cities == {"كفر قاسم": 230, "الطيبة": 100}
    assert [(c.customer_name, c.orders, c.revenue) for c in analytics.top_customers] == [
        ("سامي", 2, 180), ("خالد", 1, 150)]
    assert analytics.top_customers[0].last_order == june
    by_category = {c.category: (c.units_sold, c.revenue) for c in analytics.categories}
    assert by_category == {"مقصات": (2, 230), "مستحضرات": (4, 100)}


def test_analytics_of_no_orders():
    analytics = advanced_analytics([], [A])
    assert analytics.conversion_rate == 0
    assert analytics.top_customers == []
