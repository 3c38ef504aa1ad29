"""
Bike inventory, bike wash locations and the public business profile.

Admin routes manage the full bike record; public routes only ever expose
listing fields and never the financial or seller details.
"""
import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from flask import Flask, request
from flask_jwt_extended import jwt_required
from pymongo import ReturnDocument

from backend.auth_routes import require_admin_user
from backend.finance import compute_my_share, total_partner_percentage
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
    AdminBikeQuery,
    BikeCreate,
    BikeQuery,
    BikeStatusUpdate,
    BikeUpdate,
    BikeWashLocationCreate,
    BikeWashLocationQuery,
    BikeWashLocationStatusUpdate,
    BikeWashLocationUpdate,
    PublicInfoInput,
    storage_sort_field,
    validate_update,
)

PUBLIC_BIKE_STATUSES = ("active", "available")
PRIVATE_BIKE_FIELDS = (
    "purchase_price",
    "purchase_date",
    "my_share",
    "partners",
    "seller_info",
    "seller_available_docs",
    "bike_available_docs",
    "service_history",
)
PUBLIC_BIKE_PROJECTION = {field: 0 for field in PRIVATE_BIKE_FIELDS}
BIKE_NULLABLE_FIELDS = (
    "purchase_date",
    "my_share",
    "seller_info",
    "seller_available_docs",
    "bike_available_docs",
    "location",
)
BIKE_SEARCH_FIELDS = ("title", "brand", "model", "description")
DEFAULT_SHOWCASE_LIMIT = 6


def serialize_bike(bike_document, public: bool = False) -> Dict[str, object]:
    if not bike_document:
        return {}
    document = dict(bike_document)
    if public:
        for field in PRIVATE_BIKE_FIELDS:
            document.pop(field, None)
    document.setdefault("views", 0)
    return camelize(document)


def serialize_wash_location(location_document) -> Dict[str, object]:
    return camelize(location_document) if location_document else {}


def partner_share_documents(partners: Optional[Iterable[Dict]]) -> List[Dict]:
    return [
        {
            "partner_id": parse_object_id(entry["partner_id"], "partner"),
            "percentage": float(entry["percentage"]),
        }
        for entry in partners or []
    ]


def bike_search_query(params: BikeQuery, allowed_statuses: Optional[Iterable[str]] = None) -> Dict:
    query: Dict[str, object] = {}
    if allowed_statuses is not None:
        allowed = list(allowed_statuses)
        if params.status and params.status in allowed:
            query["status"] = params.status
        else:
            query["status"] = {"$in": allowed}
    elif params.status:
        query["status"] = params.status

    if params.brand:
        query["brand"] = re.compile(f"^{re.escape(params.brand)}$", re.IGNORECASE)
    if params.condition:
        query["condition"] = params.condition

    price_range: Dict[str, float] = {}
    if params.min_price is not None:
        price_range["$gte"] = params.min_price
    if params.max_price is not None:
        price_range["$lte"] = params.max_price
    if price_range:
        query["price"] = price_range

    if params.search:
        query.update(regex_filter(BIKE_SEARCH_FIELDS, params.search))
    return query


def showcase_limit() -> int:
    try:
        limit = int(request.args.get("limit", DEFAULT_SHOWCASE_LIMIT))
    except (TypeError, ValueError):
        raise ApiError(400, "limit must be a number")
    return min(max(limit, 1), 50)


def register_catalog_routes(app: Flask, db):
    admin_email = app.config["DEFAULT_ADMIN_EMAIL"]

    def ensure_partners_exist(partners: List[Dict]):
        partner_ids = [entry["partner_id"] for entry in partners]
        found = fetch_documents_by_ids(db.partners, partner_ids, {"_id": 1})
        for partner_id in partner_ids:
            if partner_id not in found:
                raise ApiError(400, f"Partner not found: {partner_id}")

    def fetch_bike(bike_id: str):
        bike = db.bikes.find_one({"_id": parse_object_id(bike_id, "bike")})
        if not bike:
            raise ApiError(404, "Bike not found")
        return bike

    def paginated_bikes(query: Dict, params: BikeQuery, projection=None):
        pagination = calculate_pagination(
            params.page, params.limit, storage_sort_field(params.sort_by), params.sort_order
        )
        cursor = (
            db.bikes.find(query, projection)
            .sort([(pagination["sort_by"], pagination["sort_direction"]), ("_id", -1)])
            .skip(pagination["skip"])
            .limit(pagination["limit"])
        )
        total = db.bikes.count_documents(query)
        return list(cursor), pagination_meta(total, pagination["page"], pagination["limit"])

    # --- Admin bikes ---

    @app.route("/api/admin/bikes", methods=["GET"])
    @jwt_required()
    def admin_list_bikes():
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        params = AdminBikeQuery.model_validate(query_params())
        bikes, meta = paginated_bikes(bike_search_query(params), params)
        return success_response(
            [serialize_bike(bike) for bike in bikes], "Bikes retrieved successfully", meta=meta
        )

    @app.route("/api/admin/bikes", methods=["POST"])
    @jwt_required()
    def admin_create_bike():
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        data = BikeCreate.model_validate(read_json_body())
        bike_document = data.model_dump(exclude_none=True)
        bike_document["partners"] = partner_share_documents(bike_document["partners"])
        ensure_partners_exist(bike_document["partners"])

        if bike_document.get("my_share") is None:
            bike_document["my_share"] = compute_my_share(data.price, bike_document["partners"])

        now = datetime.utcnow()
        bike_document.update(
            {
                "views": 0,
                "service_history": [],
                "created_by": admin.get("email"),
                "created_at": now,
                "updated_at": now,
            }
        )
        insert_result = db.bikes.insert_one(bike_document)
        bike_document["_id"] = insert_result.inserted_id

        app.logger.info("Bike %s created by %s", insert_result.inserted_id, admin.get("email"))
        return success_response(serialize_bike(bike_document), "Bike created successfully", 201)

    @app.route("/api/admin/bikes/<bike_id>", methods=["GET"])
    @jwt_required()
    def admin_get_bike(bike_id: str):
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error
        return success_response(serialize_bike(fetch_bike(bike_id)), "Bike retrieved successfully")

    @app.route("/api/admin/bikes/<bike_id>", methods=["PATCH", "PUT"])
    @jwt_required()
    def admin_update_bike(bike_id: str):
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        bike = fetch_bike(bike_id)
        update = validate_update(BikeUpdate, read_json_body())

        if isinstance(update, BikeStatusUpdate):
            changes: Dict[str, object] = {"status": update.status}
            message = f"Bike status changed to {update.status}"
        else:
            changes = compact_changes(
                update.model_dump(exclude={"update_type"}, exclude_unset=True),
                nullable=BIKE_NULLABLE_FIELDS,
            )
            if "partners" in changes:
                changes["partners"] = partner_share_documents(changes["partners"] or [])
                ensure_partners_exist(changes["partners"])

            merged_partners = changes.get("partners", bike.get("partners") or [])
            if total_partner_percentage(merged_partners) > 100:
                raise ApiError(400, "Total partner percentage cannot exceed 100%")

            # an explicit null asks for the derived share
            touched = {"price", "partners", "my_share"} & changes.keys()
            if touched and changes.get("my_share") is None:
                changes["my_share"] = compute_my_share(
                    changes.get("price", bike.get("price")), merged_partners
                )
            message = "Bike updated successfully"

        changes["updated_at"] = datetime.utcnow()
        updated = db.bikes.find_one_and_update(
            {"_id": bike["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        return success_response(serialize_bike(updated), message)

    @app.route("/api/admin/bikes/<bike_id>", methods=["DELETE"])
    @jwt_required()
    def admin_delete_bike(bike_id: str):
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        bike = fetch_bike(bike_id)
        db.bikes.update_one(
            {"_id": bike["_id"]},
            {"$set": {"status": "inactive", "updated_at": datetime.utcnow()}},
        )
        app.logger.info("Bike %s deactivated by %s", bike["_id"], admin.get("email"))
        return success_response(message="Bike deleted successfully")

    # --- Public bikes ---

    @app.route("/api/public/bikes", methods=["GET"])
    def public_list_bikes():
        params = BikeQuery.model_validate(query_params())
        bikes, meta = paginated_bikes(
            bike_search_query(params, PUBLIC_BIKE_STATUSES), params, PUBLIC_BIKE_PROJECTION
        )
        return success_response(
            [serialize_bike(bike, public=True) for bike in bikes],
            "Bikes retrieved successfully",
            meta=meta,
        )

    @app.route("/api/public/bikes/featured", methods=["GET"])
    def public_featured_bikes():
        bikes = (
            db.bikes.find(
                {"is_featured": True, "status": {"$in": list(PUBLIC_BIKE_STATUSES)}},
                PUBLIC_BIKE_PROJECTION,
            )
            .sort([("created_at", -1), ("_id", -1)])
            .limit(showcase_limit())
        )
        return success_response(
            [serialize_bike(bike, public=True) for bike in bikes],
            "Featured bikes retrieved successfully",
        )

    @app.route("/api/public/bikes/sold", methods=["GET"])
    def public_sold_bikes():
        bikes = (
            db.bikes.find({"status": "sold"}, PUBLIC_BIKE_PROJECTION)
            .sort([("updated_at", -1), ("_id", -1)])
            .limit(showcase_limit())
        )
        return success_response(
            [serialize_bike(bike, public=True) for bike in bikes],
            "Sold bikes retrieved successfully",
        )

    @app.route("/api/public/bikes/<bike_id>", methods=["GET"])
    def public_get_bike(bike_id: str):
        bike = db.bikes.find_one_and_update(
            {"_id": parse_object_id(bike_id, "bike"), "status": {"$ne": "inactive"}},
            {"$inc": {"views": 1}},
            projection=PUBLIC_BIKE_PROJECTION,
            return_document=ReturnDocument.AFTER,
        )
        if not bike:
            raise ApiError(404, "Bike not found")
        return success_response(serialize_bike(bike, public=True), "Bike retrieved successfully")

    # --- Bike wash locations ---

    def fetch_wash_location(location_id: str):
        location = db.bike_wash_locations.find_one(
            {"_id": parse_object_id(location_id, "bike wash location")}
        )
        if not location:
            raise ApiError(404, "Bike wash location not found")
        return location

    def ensure_unique_location(name: str, exclude_id=None):
        query: Dict[str, object] = {
            "location": re.compile(f"^{re.escape(name)}$", re.IGNORECASE)
        }
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if db.bike_wash_locations.find_one(query):
            raise ApiError(409, "A bike wash location with this name already exists")

    @app.route("/api/admin/bike-wash", methods=["GET"])
    @jwt_required()
    def admin_list_wash_locations():
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        params = BikeWashLocationQuery.model_validate(query_params())
        query: Dict[str, object] = {}
        if params.status:
            query["status"] = params.status
        if params.search:
            query.update(regex_filter(("location", "features"), params.search))

        direction = 1 if params.sort_order == "asc" else -1
        locations = db.bike_wash_locations.find(query).sort(
            storage_sort_field(params.sort_by), direction
        )
        return success_response(
            [serialize_wash_location(location) for location in locations],
            "Bike wash locations retrieved successfully",
        )

    @app.route("/api/admin/bike-wash", methods=["POST"])
    @jwt_required()
    def admin_create_wash_location():
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        data = BikeWashLocationCreate.model_validate(read_json_body())
        ensure_unique_location(data.location)

        now = datetime.utcnow()
        location_document = {**data.model_dump(), "created_at": now, "updated_at": now}
        insert_result = db.bike_wash_locations.insert_one(location_document)
        location_document["_id"] = insert_result.inserted_id
        return success_response(
            serialize_wash_location(location_document),
            "Bike wash location created successfully",
            201,
        )

    @app.route("/api/admin/bike-wash/<location_id>", methods=["GET"])
    @jwt_required()
    def admin_get_wash_location(location_id: str):
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error
        return success_response(
            serialize_wash_location(fetch_wash_location(location_id)),
            "Bike wash location retrieved successfully",
        )

    @app.route("/api/admin/bike-wash/<location_id>", methods=["PATCH", "PUT"])
    @jwt_required()
    def admin_update_wash_location(location_id: str):
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        location = fetch_wash_location(location_id)
        update = validate_update(BikeWashLocationUpdate, read_json_body())

        if isinstance(update, BikeWashLocationStatusUpdate):
            changes: Dict[str, object] = {"status": update.status}
        else:
            changes = compact_changes(
                update.model_dump(exclude={"update_type"}, exclude_unset=True)
            )
            if changes.get("location"):
                ensure_unique_location(changes["location"], exclude_id=location["_id"])

        changes["updated_at"] = datetime.utcnow()
        updated = db.bike_wash_locations.find_one_and_update(
            {"_id": location["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        return success_response(
            serialize_wash_location(updated), "Bike wash location updated successfully"
        )

    @app.route("/api/admin/bike-wash/<location_id>", methods=["DELETE"])
    @jwt_required()
    def admin_delete_wash_location(location_id: str):
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        location = fetch_wash_location(location_id)
        db.bike_wash_locations.update_one(
            {"_id": location["_id"]},
            {"$set": {"status": "inactive", "updated_at": datetime.utcnow()}},
        )
        return success_response(message="Bike wash location deleted successfully")

    @app.route("/api/public/bike-wash", methods=["GET"])
    def public_list_wash_locations():
        locations = db.bike_wash_locations.find({"status": "active"}).sort("created_at", -1)
        return success_response(
            [serialize_wash_location(location) for location in locations],
            "Bike wash locations retrieved successfully",
        )

    # --- Public business profile ---

    def serialize_public_info(info_document) -> Dict[str, object]:
        return camelize(info_document) if info_document else {}

    @app.route("/api/admin/profile", methods=["GET"])
    @jwt_required()
    def admin_get_public_info():
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        info = db.public_info.find_one({})
        if not info:
            raise ApiError(404, "Public profile not found")
        return success_response(serialize_public_info(info), "Public profile retrieved")

    @app.route("/api/admin/profile", methods=["POST"])
    @jwt_required()
    def admin_create_public_info():
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        data = PublicInfoInput.model_validate(read_json_body())
        if db.public_info.find_one({}):
            raise ApiError(409, "Public profile already exists. Use PUT to update it.")

        now = datetime.utcnow()
        info_document = {**data.model_dump(), "created_at": now, "updated_at": now}
        insert_result = db.public_info.insert_one(info_document)
        info_document["_id"] = insert_result.inserted_id
        return success_response(
            serialize_public_info(info_document), "Public profile created successfully", 201
        )

    @app.route("/api/admin/profile", methods=["PUT"])
    @jwt_required()
    def admin_update_public_info():
        admin, error = require_admin_user(db, admin_email)
        if error:
            return error

        data = PublicInfoInput.model_validate(read_json_body())
        now = datetime.utcnow()
        info = db.public_info.find_one_and_update(
            {},
            {"$set": {**data.model_dump(), "updated_at": now}, "$setOnInsert": {"created_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return success_response(serialize_public_info(info), "Public profile updated successfully")

    @app.route("/api/public/info", methods=["GET"])
    def public_info():
        info = db.public_info.find_one({}, {"created_at": 0, "updated_at": 0})
        if not info:
            raise ApiError(404, "Public profile not found")
        return success_response(serialize_public_info(info), "Public profile retrieved")
