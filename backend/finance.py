"""
Financial aggregation for bikes, partners, purchase orders and expenses.

All functions here are pure: they take plain store documents (snake_case
keys, as persisted) and return derived figures. Nothing is rounded while
accumulating; callers round once when shaping a response.
"""
import calendar
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple

MONTH_LABELS = [calendar.month_abbr[index] for index in range(1, 13)]
ACTIVE_BIKE_STATUSES = ("active", "available")
TOP_PARTNER_LIMIT = 5


def round_money(value) -> float:
    return round(float(value or 0), 2)


def to_local_time(value: datetime) -> datetime:
    """Convert a stored (naive UTC) timestamp into naive server-local time."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone().replace(tzinfo=None)


def shift_month(year: int, month: int, offset: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


# --- Partner shares ---


def compute_share_amount(total, percentage) -> float:
    percentage = float(percentage or 0)
    if percentage < 0 or percentage > 100:
        raise ValueError("Share percentage must be between 0 and 100.")
    return float(total or 0) * percentage / 100


def total_partner_percentage(partners: Optional[Iterable[Dict]]) -> float:
    return sum(float(partner.get("percentage") or 0) for partner in partners or [])


def compute_my_share(price, partners: Optional[Iterable[Dict]]) -> float:
    partners = list(partners or [])
    if not partners:
        return float(price or 0)
    return float(price or 0) * (100 - total_partner_percentage(partners)) / 100


def find_partner_share(bike: Dict, partner_id) -> Optional[Dict]:
    target = str(partner_id)
    for entry in bike.get("partners") or []:
        if str(entry.get("partner_id")) == target:
            return entry
    return None


def partner_share_percentage(bike: Dict, partner_id) -> float:
    entry = find_partner_share(bike, partner_id)
    return float(entry.get("percentage") or 0) if entry else 0.0


def partner_has_share(bike: Dict, partner_id) -> bool:
    return find_partner_share(bike, partner_id) is not None


def compute_partner_analytics(
    bikes: Iterable[Dict], partner_id, now: Optional[datetime] = None
) -> Dict[str, object]:
    """Per-bike share figures and rolled-up totals for one partner.

    Earnings are only counted for sold bikes and use the share amount as a
    stand-in for realized payout. Investment counts every bike the partner
    holds a share in, whatever its status.
    """
    now = now or datetime.now()
    total_earnings = 0.0
    total_investment = 0.0
    total_profit = 0.0
    sold_bikes = 0
    active_bikes = 0
    bike_rows: List[Dict[str, object]] = []

    for bike in bikes:
        share_percentage = partner_share_percentage(bike, partner_id)
        share_amount = compute_share_amount(bike.get("price"), share_percentage)
        status = bike.get("status")

        earnings = 0.0
        if status == "sold":
            earnings = share_amount
            sold_bikes += 1
        elif status in ACTIVE_BIKE_STATUSES:
            active_bikes += 1

        total_earnings += earnings
        total_investment += share_amount
        total_profit += earnings - share_amount

        bike_rows.append(
            {
                "bike_id": bike.get("_id"),
                "title": bike.get("title"),
                "brand": bike.get("brand"),
                "model": bike.get("model"),
                "year": bike.get("year"),
                "price": bike.get("price"),
                "status": status,
                "share_percentage": share_percentage,
                "share_amount": share_amount,
                "earnings": earnings,
                "created_at": bike.get("created_at"),
                "updated_at": bike.get("updated_at"),
            }
        )

    total_bikes = len(bike_rows)
    average_share = (
        sum(row["share_percentage"] for row in bike_rows) / total_bikes
        if total_bikes
        else 0.0
    )
    average_earnings = total_earnings / sold_bikes if sold_bikes else 0.0
    profit_margin = total_profit / total_investment * 100 if total_investment else 0.0

    bike_rows.sort(
        key=lambda row: row["created_at"] or datetime.min, reverse=True
    )

    return {
        "summary": {
            "totalBikes": total_bikes,
            "soldBikes": sold_bikes,
            "activeBikes": active_bikes,
            "totalEarnings": round_money(total_earnings),
            "totalInvestment": round_money(total_investment),
            "totalProfit": round_money(total_profit),
            "averageSharePercentage": round_money(average_share),
            "averageEarningsPerBike": round_money(average_earnings),
            "profitMargin": round_money(profit_margin),
        },
        "monthly_earnings": partner_monthly_earnings(bike_rows, now),
        "brand_analytics": partner_brand_analytics(bike_rows),
        "bike_rows": bike_rows,
    }


def partner_monthly_earnings(bike_rows: List[Dict], now: datetime) -> List[Dict]:
    # Sold bikes are attributed to the month they were last updated in.
    buckets: Dict[Tuple[int, int], Dict[str, float]] = {}
    for offset in range(-11, 1):
        buckets[shift_month(now.year, now.month, offset)] = {"earnings": 0.0, "bikes_sold": 0}

    for row in bike_rows:
        updated_at = row.get("updated_at")
        if row.get("status") != "sold" or not isinstance(updated_at, datetime):
            continue
        local = to_local_time(updated_at)
        bucket = buckets.get((local.year, local.month))
        if bucket is None:
            continue
        bucket["earnings"] += row["earnings"]
        bucket["bikes_sold"] += 1

    return [
        {
            "month": f"{year:04d}-{month:02d}",
            "earnings": round_money(values["earnings"]),
            "bikesSold": values["bikes_sold"],
        }
        for (year, month), values in buckets.items()
    ]


def partner_brand_analytics(bike_rows: List[Dict]) -> List[Dict]:
    brands: Dict[str, Dict[str, float]] = {}
    for row in bike_rows:
        brand = row.get("brand") or "Unknown"
        entry = brands.setdefault(
            brand,
            {
                "brand": brand,
                "totalBikes": 0,
                "soldBikes": 0,
                "activeBikes": 0,
                "totalEarnings": 0.0,
                "totalInvestment": 0.0,
            },
        )
        entry["totalBikes"] += 1
        entry["totalEarnings"] += row["earnings"]
        entry["totalInvestment"] += row["share_amount"]
        if row.get("status") == "sold":
            entry["soldBikes"] += 1
        elif row.get("status") in ACTIVE_BIKE_STATUSES:
            entry["activeBikes"] += 1

    for entry in brands.values():
        entry["totalEarnings"] = round_money(entry["totalEarnings"])
        entry["totalInvestment"] = round_money(entry["totalInvestment"])
    return list(brands.values())


# --- Purchase orders ---


def total_partner_profit(order: Dict) -> float:
    return sum(float(entry.get("profit") or 0) for entry in order.get("partners_profit") or [])


def compute_net_profit(order: Dict) -> float:
    return float(order.get("profit") or 0) - total_partner_profit(order)


def summarize_orders(orders: Iterable[Dict]) -> Dict[str, float]:
    totals = {"orders": 0, "revenue": 0.0, "profit": 0.0, "partner_profit": 0.0, "net_profit": 0.0}
    for order in orders:
        partner_profit = total_partner_profit(order)
        profit = float(order.get("profit") or 0)
        totals["orders"] += 1
        totals["revenue"] += float(order.get("amount") or 0)
        totals["profit"] += profit
        totals["partner_profit"] += partner_profit
        totals["net_profit"] += profit - partner_profit
    return totals


def profit_margin(profit, revenue) -> float:
    return float(profit) / float(revenue) * 100 if revenue else 0.0


def is_confirmed(order: Dict) -> bool:
    return order.get("status") == "confirmed"


def order_local_month(order: Dict) -> Optional[Tuple[int, int]]:
    created_at = order.get("created_at")
    if not isinstance(created_at, datetime):
        return None
    local = to_local_time(created_at)
    return local.year, local.month


def yearly_revenue(orders: Iterable[Dict], year: int) -> List[Dict[str, object]]:
    """Twelve monthly buckets of confirmed orders for ``year`` (local time)."""
    grouped: Dict[int, List[Dict]] = {month: [] for month in range(1, 13)}
    for order in orders:
        if not is_confirmed(order):
            continue
        key = order_local_month(order)
        if key and key[0] == year:
            grouped[key[1]].append(order)

    months = []
    for month in range(1, 13):
        totals = summarize_orders(grouped[month])
        months.append(
            {
                "month": MONTH_LABELS[month - 1],
                "orders": totals["orders"],
                "revenue": round_money(totals["revenue"]),
                "adminProfit": round_money(totals["net_profit"]),
            }
        )
    return months


def monthly_trends(orders: Iterable[Dict], now: datetime, months: int = 6) -> List[Dict]:
    """Confirmed order totals for the last ``months`` calendar months, oldest first."""
    keys = [shift_month(now.year, now.month, offset) for offset in range(-(months - 1), 1)]
    grouped: Dict[Tuple[int, int], List[Dict]] = {key: [] for key in keys}
    for order in orders:
        if not is_confirmed(order):
            continue
        key = order_local_month(order)
        if key in grouped:
            grouped[key].append(order)

    trends = []
    for year, month in keys:
        totals = summarize_orders(grouped[(year, month)])
        trends.append(
            {
                "month": f"{year:04d}-{month:02d}",
                "orders": totals["orders"],
                "revenue": round_money(totals["revenue"]),
                "profit": round_money(totals["profit"]),
                "adminProfit": round_money(totals["net_profit"]),
            }
        )
    return trends


def top_partners(orders: Iterable[Dict], limit: int = TOP_PARTNER_LIMIT) -> List[Dict]:
    performance: Dict[str, Dict[str, object]] = {}
    for order in orders:
        for entry in order.get("partners_profit") or []:
            partner_key = str(entry.get("partner_id"))
            stats = performance.setdefault(
                partner_key,
                {
                    "partnerId": partner_key,
                    "totalOrders": 0,
                    "totalRevenue": 0.0,
                    "totalProfit": 0.0,
                    "confirmedOrders": 0,
                },
            )
            stats["totalOrders"] += 1
            stats["totalRevenue"] += float(order.get("amount") or 0)
            stats["totalProfit"] += float(entry.get("profit") or 0)
            if is_confirmed(order):
                stats["confirmedOrders"] += 1

    # sorted() is stable, so ties keep first-seen order.
    ranked = sorted(performance.values(), key=lambda stats: stats["totalProfit"], reverse=True)
    leaders = ranked[:limit]
    for stats in leaders:
        stats["totalRevenue"] = round_money(stats["totalRevenue"])
        stats["totalProfit"] = round_money(stats["totalProfit"])
    return leaders


def purchase_order_stats(
    orders: List[Dict], period_days: int, now_utc: Optional[datetime] = None
) -> Dict[str, object]:
    now_utc = now_utc or datetime.utcnow()
    period_start = now_utc - timedelta(days=period_days)

    recent = [
        order
        for order in orders
        if isinstance(order.get("created_at"), datetime)
        and order["created_at"].replace(tzinfo=None) >= period_start
    ]
    confirmed = [order for order in orders if is_confirmed(order)]

    status_counts: Dict[str, int] = {}
    for order in orders:
        status = order.get("status") or "unknown"
        status_counts[status] = status_counts.get(status, 0) + 1

    overall = summarize_orders(orders)
    confirmed_totals = summarize_orders(confirmed)
    recent_totals = summarize_orders(recent)

    return {
        "overview": {
            "totalPurchaseOrders": len(orders),
            "recentPurchaseOrders": len(recent),
            "statusDistribution": status_counts,
            "period": f"{period_days} days",
        },
        "financial": {
            "overall": {
                "totalRevenue": round_money(overall["revenue"]),
                "totalPartnerProfit": round_money(overall["partner_profit"]),
                "totalProfit": round_money(overall["profit"]),
                "totalNetProfit": round_money(overall["net_profit"]),
                "profitMargin": round_money(profit_margin(overall["profit"], overall["revenue"])),
            },
            "confirmed": {
                "count": confirmed_totals["orders"],
                "revenue": round_money(confirmed_totals["revenue"]),
                "profit": round_money(confirmed_totals["profit"]),
                "netProfit": round_money(confirmed_totals["net_profit"]),
                "profitMargin": round_money(
                    profit_margin(confirmed_totals["profit"], confirmed_totals["revenue"])
                ),
            },
            "recent": {
                "revenue": round_money(recent_totals["revenue"]),
                "partnerProfit": round_money(recent_totals["partner_profit"]),
                "profit": round_money(recent_totals["profit"]),
                "profitMargin": round_money(
                    profit_margin(recent_totals["profit"], recent_totals["revenue"])
                ),
            },
        },
        "topPartners": top_partners(orders),
        "monthlyTrends": monthly_trends(orders, to_local_time(now_utc)),
    }


# --- Expense price adjustments ---


def applied_amount(adjust_bike_price, amount) -> float:
    return float(amount or 0) if adjust_bike_price else 0.0


def plan_price_adjustments(
    previous: Optional[Dict], current: Optional[Dict]
) -> List[Tuple[object, float]]:
    """Purchase-price increments needed to move an expense between states.

    ``previous`` is the stored expense (``None`` on create) and ``current``
    the expense after the change (``None`` on delete). Each is a mapping with
    ``bike_id``, ``amount`` and ``adjust_bike_price``. Returns ``(bike_id,
    delta)`` pairs, never more than one per bike and never a zero delta.
    """
    deltas: Dict[str, List] = {}

    def add(bike_id, delta):
        if bike_id is None or not delta:
            return
        entry = deltas.setdefault(str(bike_id), [bike_id, 0.0])
        entry[1] += delta

    if previous is not None:
        add(
            previous.get("bike_id"),
            -applied_amount(previous.get("adjust_bike_price"), previous.get("amount")),
        )
    if current is not None:
        add(
            current.get("bike_id"),
            applied_amount(current.get("adjust_bike_price"), current.get("amount")),
        )

    return [(bike_id, delta) for bike_id, delta in deltas.values() if delta]


def partner_share_of_expense(bike: Dict, partner_id, amount) -> float:
    return compute_share_amount(amount, partner_share_percentage(bike, partner_id))


# --- Dashboard ---


def dashboard_summary(
    bikes: List[Dict], orders: List[Dict], users: List[Dict], now_utc: Optional[datetime] = None
) -> Dict[str, object]:
    now_utc = now_utc or datetime.utcnow()
    local_now = to_local_time(now_utc)
    previous_year, previous_month = shift_month(local_now.year, local_now.month, -1)
    last_month_start = datetime(previous_year, previous_month, 1)

    active = [bike for bike in bikes if bike.get("status") == "active"]
    confirmed = [order for order in orders if is_confirmed(order)]
    this_month = [
        order for order in confirmed if order_local_month(order) == (local_now.year, local_now.month)
    ]

    brand_counts: Dict[str, int] = {}
    for bike in bikes:
        if bike.get("status") in ("active", "sold") and bike.get("brand"):
            brand_counts[bike["brand"]] = brand_counts.get(bike["brand"], 0) + 1
    top_brand = max(brand_counts.items(), key=lambda item: item[1])[0] if brand_counts else "N/A"

    active_users = 0
    for user in users:
        updated_at = user.get("updated_at")
        if isinstance(updated_at, datetime) and to_local_time(updated_at) >= last_month_start:
            active_users += 1

    average_price = (
        sum(float(bike.get("price") or 0) for bike in active) / len(active) if active else 0.0
    )

    return {
        "totalBikes": len(bikes),
        "activeBikes": len(active),
        "soldBikes": sum(1 for bike in bikes if bike.get("status") == "sold"),
        "totalRevenue": round_money(summarize_orders(confirmed)["revenue"]),
        "monthlyRevenue": round_money(summarize_orders(this_month)["revenue"]),
        "totalOrders": len(orders),
        "pendingOrders": sum(1 for order in orders if order.get("status") == "pending"),
        "completedOrders": len(confirmed),
        "totalUsers": len(users),
        "activeUsers": active_users,
        "averagePrice": round_money(average_price),
        "topSellingBrand": top_brand,
    }
