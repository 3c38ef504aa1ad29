import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from flask import Flask, request
from flask_jwt_extended import jwt_required
from pymongo import ReturnDocument

from backend.auth_routes import require_admin_user
from backend.finance import (
    compute_net_profit,
    compute_partner_analytics,
    dashboard_summary,
    partner_has_share,
    partner_share_of_expense,
    plan_price_adjustments,
    purchase_order_stats,
    round_money,
    to_local_time,
    total_partner_profit,
    yearly_revenue,
)
from backend.helpers import (
    ApiError,
    calculate_pagination,
    camelize,
    compact_changes,
    fetch_documents_by_ids,
    pagination_meta,
    parse_object_id,
    query_params,
    read_json_body,
    regex_filter,
    success_response,
)
from backend.schemas import (
    ExpenseCreate,
    ExpenseQuery,
    ExpenseUpdate,
    PartnerActiveUpdate,
    PartnerCreate,
    PartnerQuery,
    PartnerUpdate,
    PurchaseOrderCreate,
    PurchaseOrderPaymentUpdate,
    PurchaseOrderQuery,
    PurchaseOrderStatusUpdate,
    PurchaseOrderUpdate,
    storage_sort_field,
    validate_update,
)

BIKE_SUMMARY_PROJECTION = {
    "title": 1,
    "brand": 1,
    "model": 1,
    "year": 1,
    "price": 1,
    "status": 1,
    "images": 1,
}
UNDELETABLE_ORDER_STATUSES = {"completed", "confirmed"}
MAX_STATS_PERIOD_DAYS = 36500
ORDER_NULLABLE_FIELDS = ("buyer_email", "buyer_address", "due_amount", "due_date", "notes")
EXPENSE_NULLABLE_FIELDS = ("partner_id", "receipt_image", "notes")
MIN_REVENUE_YEAR = 1970
MAX_REVENUE_YEAR = 3000


def serialize_partner(partner_document) -> Dict[str, object]:
    return camelize(partner_document) if partner_document else {}


def serialize_bike_summary(bike_document) -> Optional[Dict[str, object]]:
    if not bike_document:
        return None
    return camelize({key: bike_document.get(key) for key in ("_id", *BIKE_SUMMARY_PROJECTION)})


def serialize_purchase_order(order_document, bike_map=None) -> Dict[str, object]:
    if not order_document:
        return {}
    order = camelize(order_document)
    order["totalPartnerProfit"] = round_money(total_partner_profit(order_document))
    order["netProfit"] = round_money(compute_net_profit(order_document))
    if bike_map is not None:
        order["bike"] = serialize_bike_summary(bike_map.get(order_document.get("bike_id")))
    return order


def serialize_expense(expense_document, bike_map=None, partner_map=None) -> Dict[str, object]:
    if not expense_document:
        return {}
    expense = camelize(expense_document)
    if bike_map is not None:
        expense["bike"] = serialize_bike_summary(bike_map.get(expense_document.get("bike_id")))
    if partner_map is not None:
        partner = partner_map.get(expense_document.get("partner_id"))
        expense["partner"] = (
            {"id": str(partner["_id"]), "name": partner.get("name")} if partner else None
        )
    return expense


def serialize_bike_analytics(row: Dict[str, object]) -> Dict[str, object]:
    shaped = camelize(row)
    shaped["shareAmount"] = round_money(row["share_amount"])
    shaped["earnings"] = round_money(row["earnings"])
    shaped["sharePercentage"] = round_money(row["share_percentage"])
    return shaped


def partner_profit_documents(entries: Iterable[Dict]) -> List[Dict]:
    documents = []
    for entry in entries or []:
        document = {
            "partner_id": parse_object_id(entry["partner_id"], "partner"),
            "profit": float(entry["profit"]),
        }
        if entry.get("share_percentage") is not None:
            document["share_percentage"] = float(entry["share_percentage"])
        documents.append(document)
    return documents


def register_finance_routes(app: Flask, db):
    admin_email = app.config["DEFAULT_ADMIN_EMAIL"]

    def fetch_partner(partner_id) -> Dict:
        partner = db.partners.find_one({"_id": parse_object_id(partner_id, "partner")})
        if not partner:
            raise ApiError(404, "Partner not found")
        return partner

    def fetch_bike(bike_id) -> Dict:
        bike = db.bikes.find_one({"_id": parse_object_id(bike_id, "bike")})
        if not bike:
            raise ApiError(404, "Bike not found")
        return bike

    def ensure_partner_contact_unique(email: Optional[str], phone: Optional[str], exclude_id=None):
        conditions = []
        if email:
            conditions.append({"email": email})
        if phone:
            conditions.append({"phone": phone})
        if not conditions:
            return
        query: Dict[str, object] = {"$or": conditions}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if db.partners.find_one(query):
            raise ApiError(409, "A partner with this email or phone already exists")

    def ensure_partners_exist(entries: List[Dict]):
        partner_ids = [entry["partner_id"] for entry in entries]
        found = fetch_documents_by_ids(db.partners, partner_ids, {"_id": 1})
        for partner_id in partner_ids:
            if partner_id not in found:
                raise ApiError(404, f"Partner not found: {partner_id}")

    # --- Partners ---

    @app.route("/api/admin/partners", methods=["GET"])
    @jwt_required()
    def list_partners():
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        params = PartnerQuery.model_validate(query_params())
        query: Dict[str, object] = {}
        if params.is_active is not None:
            query["is_active"] = params.is_active
        if params.search:
            query.update(regex_filter(("name", "email", "phone", "address"), params.search))

        direction = 1 if params.sort_order == "asc" else -1
        partners = db.partners.find(query).sort(storage_sort_field(params.sort_by), direction)
        return success_response(
            [serialize_partner(partner) for partner in partners],
            "Partners retrieved successfully",
        )

    @app.route("/api/admin/partners", methods=["POST"])
    @jwt_required()
    def create_partner():
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        data = PartnerCreate.model_validate(read_json_body())
        partner_document = data.model_dump()
        partner_document["email"] = partner_document["email"].lower()
        ensure_partner_contact_unique(partner_document["email"], partner_document["phone"])

        now = datetime.utcnow()
        partner_document.update({"is_active": True, "created_at": now, "updated_at": now})
        insert_result = db.partners.insert_one(partner_document)
        partner_document["_id"] = insert_result.inserted_id

        app.logger.info("Partner %s created by %s", insert_result.inserted_id, admin.get("email"))
        return success_response(
            serialize_partner(partner_document), "Partner created successfully", 201
        )

    @app.route("/api/admin/partners/<partner_id>", methods=["GET"])
    @jwt_required()
    def get_partner(partner_id: str):
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error
        return success_response(
            serialize_partner(fetch_partner(partner_id)), "Partner retrieved successfully"
        )

    @app.route("/api/admin/partners/<partner_id>", methods=["PATCH", "PUT"])
    @jwt_required()
    def update_partner(partner_id: str):
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        partner = fetch_partner(partner_id)
        update = validate_update(PartnerUpdate, read_json_body())

        if isinstance(update, PartnerActiveUpdate):
            changes: Dict[str, object] = {"is_active": update.is_active}
            message = "Partner activated" if update.is_active else "Partner deactivated"
        else:
            changes = compact_changes(
                update.model_dump(exclude={"update_type"}, exclude_unset=True),
                nullable=("profile",),
            )
            if changes.get("email"):
                changes["email"] = changes["email"].lower()
            ensure_partner_contact_unique(
                changes.get("email"), changes.get("phone"), exclude_id=partner["_id"]
            )
            message = "Partner updated successfully"

        changes["updated_at"] = datetime.utcnow()
        updated = db.partners.find_one_and_update(
            {"_id": partner["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        return success_response(serialize_partner(updated), message)

    @app.route("/api/admin/partners/<partner_id>", methods=["DELETE"])
    @jwt_required()
    def delete_partner(partner_id: str):
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        partner = fetch_partner(partner_id)
        db.partners.update_one(
            {"_id": partner["_id"]},
            {"$set": {"is_active": False, "updated_at": datetime.utcnow()}},
        )
        app.logger.info("Partner %s deactivated by %s", partner["_id"], admin.get("email"))
        return success_response(message="Partner deleted successfully")

    @app.route("/api/admin/partners/<partner_id>/analytics", methods=["GET"])
    @jwt_required()
    def partner_analytics(partner_id: str):
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        partner = fetch_partner(partner_id)
        bikes = list(db.bikes.find({"partners.partner_id": partner["_id"]}))
        analytics = compute_partner_analytics(bikes, partner["_id"])

        return success_response(
            {
                "partner": serialize_partner(partner),
                "summary": analytics["summary"],
                "bikeAnalytics": [serialize_bike_analytics(row) for row in analytics["bike_rows"]],
                "monthlyEarnings": analytics["monthly_earnings"],
                "brandAnalytics": analytics["brand_analytics"],
            },
            "Partner analytics retrieved successfully",
        )

    # --- Purchase orders ---

    def fetch_purchase_order(order_id) -> Dict:
        order = db.purchase_orders.find_one({"_id": parse_object_id(order_id, "purchase order")})
        if not order:
            raise ApiError(404, "Purchase order not found")
        return order

    def order_bike_map(orders: Iterable[Dict]) -> Dict:
        return fetch_documents_by_ids(
            db.bikes, [order.get("bike_id") for order in orders], BIKE_SUMMARY_PROJECTION
        )

    @app.route("/api/admin/purchase-orders", methods=["GET"])
    @jwt_required()
    def list_purchase_orders():
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        params = PurchaseOrderQuery.model_validate(query_params())
        query: Dict[str, object] = {}
        if params.status:
            query["status"] = params.status
        if params.payment_status:
            query["payment_status"] = params.payment_status
        if params.payment_method:
            query["payment_method"] = params.payment_method
        if params.bike_id:
            query["bike_id"] = parse_object_id(params.bike_id, "bike")
        if params.partner_id:
            query["partners_profit.partner_id"] = parse_object_id(params.partner_id, "partner")
        if params.search:
            query.update(regex_filter(("buyer_name", "buyer_phone", "buyer_email"), params.search))

        pagination = calculate_pagination(
            params.page, params.limit, storage_sort_field(params.sort_by), params.sort_order
        )
        orders = list(
            db.purchase_orders.find(query)
            .sort([(pagination["sort_by"], pagination["sort_direction"]), ("_id", -1)])
            .skip(pagination["skip"])
            .limit(pagination["limit"])
        )
        total = db.purchase_orders.count_documents(query)
        bike_map = order_bike_map(orders)

        return success_response(
            [serialize_purchase_order(order, bike_map) for order in orders],
            "Purchase orders retrieved successfully",
            meta=pagination_meta(total, pagination["page"], pagination["limit"]),
        )

    @app.route("/api/admin/purchase-orders", methods=["POST"])
    @jwt_required()
    def create_purchase_order():
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        data = PurchaseOrderCreate.model_validate(read_json_body())
        bike = fetch_bike(data.bike_id)

        order_document = data.model_dump()
        order_document["bike_id"] = bike["_id"]
        order_document["partners_profit"] = partner_profit_documents(
            order_document["partners_profit"]
        )
        ensure_partners_exist(order_document["partners_profit"])

        now = datetime.utcnow()
        order_document.update(
            {"created_by": admin.get("email"), "created_at": now, "updated_at": now}
        )
        insert_result = db.purchase_orders.insert_one(order_document)
        order_document["_id"] = insert_result.inserted_id

        app.logger.info(
            "Purchase order %s created for bike %s by %s",
            insert_result.inserted_id,
            bike["_id"],
            admin.get("email"),
        )
        return success_response(
            serialize_purchase_order(order_document, {bike["_id"]: bike}),
            "Purchase order created successfully",
            201,
        )

    @app.route("/api/admin/purchase-orders/stats", methods=["GET"])
    @jwt_required()
    def purchase_order_statistics():
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        period_raw = request.args.get("period") or app.config["PURCHASE_ORDER_STATS_PERIOD_DAYS"]
        try:
            period_days = int(period_raw)
        except (TypeError, ValueError):
            raise ApiError(400, "period must be a whole number of days")
        if period_days < 1:
            raise ApiError(400, "period must be at least 1 day")
        if period_days > MAX_STATS_PERIOD_DAYS:
            raise ApiError(400, f"period cannot exceed {MAX_STATS_PERIOD_DAYS} days")

        orders = list(db.purchase_orders.find({}))
        return success_response(
            purchase_order_stats(orders, period_days),
            "Purchase order statistics retrieved successfully",
        )

    @app.route("/api/admin/purchase-orders/<order_id>", methods=["GET"])
    @jwt_required()
    def get_purchase_order(order_id: str):
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        order = fetch_purchase_order(order_id)
        return success_response(
            serialize_purchase_order(order, order_bike_map([order])),
            "Purchase order retrieved successfully",
        )

    @app.route("/api/admin/purchase-orders/<order_id>", methods=["PUT", "PATCH"])
    @jwt_required()
    def update_purchase_order(order_id: str):
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        order = fetch_purchase_order(order_id)
        update = validate_update(PurchaseOrderUpdate, read_json_body())

        if isinstance(update, PurchaseOrderStatusUpdate):
            changes: Dict[str, object] = {"status": update.status}
            message = f"Purchase order status changed to {update.status}"
        elif isinstance(update, PurchaseOrderPaymentUpdate):
            changes = {"payment_status": update.payment_status}
            if update.due_amount is not None:
                changes["due_amount"] = update.due_amount
            message = f"Payment status changed to {update.payment_status}"
        else:
            changes = compact_changes(
                update.model_dump(exclude={"update_type"}, exclude_unset=True),
                nullable=ORDER_NULLABLE_FIELDS,
            )
            if changes.get("bike_id"):
                changes["bike_id"] = fetch_bike(changes["bike_id"])["_id"]
            if "partners_profit" in changes:
                changes["partners_profit"] = partner_profit_documents(changes["partners_profit"])
                ensure_partners_exist(changes["partners_profit"])
            message = "Purchase order updated successfully"

        changes["updated_at"] = datetime.utcnow()
        updated = db.purchase_orders.find_one_and_update(
            {"_id": order["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        return success_response(
            serialize_purchase_order(updated, order_bike_map([updated])), message
        )

    @app.route("/api/admin/purchase-orders/<order_id>", methods=["DELETE"])
    @jwt_required()
    def delete_purchase_order(order_id: str):
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        order = fetch_purchase_order(order_id)
        if order.get("status") in UNDELETABLE_ORDER_STATUSES:
            raise ApiError(400, f"Cannot delete a {order['status']} purchase order")

        db.purchase_orders.delete_one({"_id": order["_id"]})
        app.logger.info("Purchase order %s deleted by %s", order["_id"], admin.get("email"))
        return success_response(message="Purchase order deleted successfully")

    # --- Expenses ---

    def fetch_expense(expense_id) -> Dict:
        expense = db.expenses.find_one({"_id": parse_object_id(expense_id, "expense")})
        if not expense:
            raise ApiError(404, "Expense not found")
        return expense

    def ensure_partner_share(bike: Dict, partner_id):
        fetch_partner(partner_id)
        if not partner_has_share(bike, partner_id):
            raise ApiError(400, "Partner does not have a share in this bike")

    def apply_price_adjustments(previous: Optional[Dict], current: Optional[Dict]):
        for bike_id, delta in plan_price_adjustments(previous, current):
            db.bikes.update_one(
                {"_id": bike_id},
                {"$inc": {"purchase_price": delta}, "$set": {"updated_at": datetime.utcnow()}},
            )
            app.logger.info("Adjusted purchase price of bike %s by %s", bike_id, delta)

    def log_partner_share_adjustment(expense: Dict, bike: Dict):
        if not expense.get("adjust_partner_shares") or not expense.get("partner_id"):
            return
        share_amount = partner_share_of_expense(bike, expense["partner_id"], expense.get("amount"))
        app.logger.info(
            "Partner %s share of expense %s on bike %s: %s",
            expense["partner_id"],
            expense.get("_id"),
            bike["_id"],
            round_money(share_amount),
        )

    def expense_context(expenses: List[Dict]):
        bike_map = fetch_documents_by_ids(
            db.bikes, [expense.get("bike_id") for expense in expenses], BIKE_SUMMARY_PROJECTION
        )
        partner_map = fetch_documents_by_ids(
            db.partners,
            [expense.get("partner_id") for expense in expenses if expense.get("partner_id")],
            {"name": 1},
        )
        return bike_map, partner_map

    @app.route("/api/admin/expenses", methods=["GET"])
    @jwt_required()
    def list_expenses():
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        params = ExpenseQuery.model_validate(query_params())
        query: Dict[str, object] = {}
        if params.bike_id:
            query["bike_id"] = parse_object_id(params.bike_id, "bike")
        if params.type:
            query["type"] = params.type
        if params.search:
            query.update(regex_filter(("title", "description", "notes"), params.search))

        pagination = calculate_pagination(
            params.page, params.limit, storage_sort_field(params.sort_by), params.sort_order
        )
        expenses = list(
            db.expenses.find(query)
            .sort([(pagination["sort_by"], pagination["sort_direction"]), ("_id", -1)])
            .skip(pagination["skip"])
            .limit(pagination["limit"])
        )
        total = db.expenses.count_documents(query)
        bike_map, partner_map = expense_context(expenses)

        return success_response(
            [serialize_expense(expense, bike_map, partner_map) for expense in expenses],
            "Expenses retrieved successfully",
            meta=pagination_meta(total, pagination["page"], pagination["limit"]),
        )

    @app.route("/api/admin/expenses", methods=["POST"])
    @jwt_required()
    def create_expense():
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        data = ExpenseCreate.model_validate(read_json_body())
        bike = fetch_bike(data.bike_id)

        expense_document = data.model_dump()
        expense_document["bike_id"] = bike["_id"]
        if data.partner_id:
            expense_document["partner_id"] = parse_object_id(data.partner_id, "partner")
            ensure_partner_share(bike, expense_document["partner_id"])

        now = datetime.utcnow()
        expense_document.update(
            {"created_by": admin.get("email"), "created_at": now, "updated_at": now}
        )
        insert_result = db.expenses.insert_one(expense_document)
        expense_document["_id"] = insert_result.inserted_id

        db.bikes.update_one(
            {"_id": bike["_id"]}, {"$addToSet": {"service_history": expense_document["_id"]}}
        )
        apply_price_adjustments(None, expense_document)
        log_partner_share_adjustment(expense_document, bike)

        bike_map, partner_map = expense_context([expense_document])
        return success_response(
            serialize_expense(expense_document, bike_map, partner_map),
            "Expense created successfully",
            201,
        )

    @app.route("/api/admin/expenses/<expense_id>", methods=["GET"])
    @jwt_required()
    def get_expense(expense_id: str):
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        expense = fetch_expense(expense_id)
        bike_map, partner_map = expense_context([expense])
        return success_response(
            serialize_expense(expense, bike_map, partner_map), "Expense retrieved successfully"
        )

    @app.route("/api/admin/expenses/<expense_id>", methods=["PUT", "PATCH"])
    @jwt_required()
    def update_expense(expense_id: str):
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        expense = fetch_expense(expense_id)
        changes = compact_changes(
            ExpenseUpdate.model_validate(read_json_body()).model_dump(exclude_unset=True),
            nullable=EXPENSE_NULLABLE_FIELDS,
        )

        if changes.get("bike_id"):
            changes["bike_id"] = parse_object_id(changes["bike_id"], "bike")
        if changes.get("partner_id"):
            changes["partner_id"] = parse_object_id(changes["partner_id"], "partner")

        merged = {**expense, **changes}
        bike_changed = merged["bike_id"] != expense["bike_id"]
        target_bike = fetch_bike(merged["bike_id"])

        if merged.get("partner_id") and (bike_changed or "partner_id" in changes):
            ensure_partner_share(target_bike, merged["partner_id"])

        changes["updated_at"] = datetime.utcnow()
        updated = db.expenses.find_one_and_update(
            {"_id": expense["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )

        if bike_changed:
            db.bikes.update_one(
                {"_id": expense["bike_id"]}, {"$pull": {"service_history": expense["_id"]}}
            )
            db.bikes.update_one(
                {"_id": target_bike["_id"]}, {"$addToSet": {"service_history": expense["_id"]}}
            )
        apply_price_adjustments(expense, updated)
        log_partner_share_adjustment(updated, target_bike)

        bike_map, partner_map = expense_context([updated])
        return success_response(
            serialize_expense(updated, bike_map, partner_map), "Expense updated successfully"
        )

    @app.route("/api/admin/expenses/<expense_id>", methods=["DELETE"])
    @jwt_required()
    def delete_expense(expense_id: str):
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        expense = fetch_expense(expense_id)
        apply_price_adjustments(expense, None)
        db.bikes.update_one(
            {"_id": expense["bike_id"]}, {"$pull": {"service_history": expense["_id"]}}
        )
        db.expenses.delete_one({"_id": expense["_id"]})

        app.logger.info("Expense %s deleted by %s", expense["_id"], admin.get("email"))
        return success_response(message="Expense deleted successfully")

    # --- Revenue and dashboard ---

    @app.route("/api/admin/revenue", methods=["GET"])
    @jwt_required()
    def revenue_by_month():
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        year_raw = request.args.get("year")
        if year_raw:
            if not re.fullmatch(r"\d{4}", year_raw.strip()):
                raise ApiError(400, "Invalid year")
            year = int(year_raw)
        else:
            year = to_local_time(datetime.utcnow()).year
        if year < MIN_REVENUE_YEAR or year > MAX_REVENUE_YEAR:
            raise ApiError(400, "Invalid year")

        # One day of slack each side covers any local-time offset.
        window = {"$gte": datetime(year - 1, 12, 31), "$lt": datetime(year + 1, 1, 2)}
        orders = list(db.purchase_orders.find({"status": "confirmed", "created_at": window}))
        months = yearly_revenue(orders, year)

        return success_response(
            {
                "year": year,
                "months": months,
                "totals": {
                    "orders": sum(month["orders"] for month in months),
                    "revenue": round_money(sum(month["revenue"] for month in months)),
                    "adminProfit": round_money(sum(month["adminProfit"] for month in months)),
                },
            },
            "Revenue retrieved successfully",
        )

    @app.route("/api/admin/stats", methods=["GET"])
    @jwt_required()
    def dashboard_stats():
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        bikes = list(db.bikes.find({}, {"status": 1, "brand": 1, "price": 1}))
        orders = list(db.purchase_orders.find({}, {"status": 1, "amount": 1, "created_at": 1}))
        users = list(db.users.find({}, {"updated_at": 1}))
        return success_response(
            dashboard_summary(bikes, orders, users), "Dashboard stats retrieved successfully"
        )
