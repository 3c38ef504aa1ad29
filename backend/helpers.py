import math
import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from flask import jsonify, request
from pydantic.alias_generators import to_camel


class ApiError(Exception):
    """An error that maps directly onto a JSON error envelope."""

    def __init__(self, status_code: int, message: str, errors: Optional[List[Dict]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.errors = errors


def success_response(
    data=None,
    message: str = "Success",
    status_code: int = 200,
    meta: Optional[Dict] = None,
):
    payload: Dict[str, object] = {
        "success": True,
        "statusCode": status_code,
        "message": message,
    }
    if data is not None:
        payload["data"] = data
    if meta is not None:
        payload["meta"] = meta
    return jsonify(payload), status_code


def error_response(message: str, status_code: int = 500, errors: Optional[List[Dict]] = None):
    payload: Dict[str, object] = {
        "success": False,
        "statusCode": status_code,
        "message": message,
    }
    if errors:
        payload["errors"] = errors
    return jsonify(payload), status_code


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def parse_object_id(value, label: str = "resource") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ApiError(400, f"Invalid {label} ID")


def normalize_object_id_list(values) -> List[ObjectId]:
    normalized_ids: List[ObjectId] = []
    if not values:
        return normalized_ids
    for value in values:
        if isinstance(value, ObjectId):
            normalized_ids.append(value)
            continue
        try:
            normalized_ids.append(ObjectId(str(value)))
        except (InvalidId, TypeError):
            continue
    return normalized_ids


def fetch_documents_by_ids(collection, ids: Iterable, projection=None) -> Dict[ObjectId, Dict]:
    normalized_ids = list(dict.fromkeys(normalize_object_id_list(list(ids))))
    if not normalized_ids:
        return {}
    documents = collection.find({"_id": {"$in": normalized_ids}}, projection)
    return {document["_id"]: document for document in documents}


def iso_or_none(value) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat() + "Z" if value.tzinfo is None else value.isoformat()
    return None


def camelize(value):
    """Recursively shape a stored document for JSON: camelCase keys, string ids, ISO dates."""
    if isinstance(value, dict):
        shaped = {}
        for key, item in value.items():
            shaped["id" if key == "_id" else to_camel(key)] = camelize(item)
        return shaped
    if isinstance(value, (list, tuple)):
        return [camelize(item) for item in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return iso_or_none(value)
    if isinstance(value, bytes):
        return None
    return value


def read_json_body() -> Dict[str, object]:
    payload = request.get_json(silent=True)
    if payload is None:
        if request.get_data(cache=True):
            raise ApiError(400, "Invalid JSON in request body")
        return {}
    if not isinstance(payload, dict):
        raise ApiError(400, "Request body must be a JSON object")
    return payload


def query_params() -> Dict[str, str]:
    return {key: value for key, value in request.args.items() if value != ""}


def calculate_pagination(
    page=1, limit=10, sort_by: Optional[str] = None, sort_order: Optional[str] = None
) -> Dict[str, object]:
    page = max(int(page or 1), 1)
    limit = max(int(limit or 10), 1)
    return {
        "page": page,
        "limit": limit,
        "skip": (page - 1) * limit,
        "sort_by": sort_by or "created_at",
        "sort_direction": 1 if sort_order == "asc" else -1,
    }


def pagination_meta(total: int, page: int, limit: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": math.ceil(total / limit) if total else 0,
    }


def regex_filter(fields: Tuple[str, ...], term: str) -> Dict[str, object]:
    pattern = re.compile(re.escape(term), re.IGNORECASE)
    return {"$or": [{field: pattern} for field in fields]}


def compact_changes(changes: Dict[str, object], nullable: Tuple[str, ...] = ()) -> Dict[str, object]:
    """Drop explicit nulls from a partial update unless the field may be cleared."""
    return {key: value for key, value in changes.items() if value is not None or key in nullable}
