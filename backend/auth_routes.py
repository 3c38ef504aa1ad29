from datetime import datetime, timedelta
from typing import Dict

import bcrypt
from flask import Flask
from flask_jwt_extended import (
    create_access_token,
    get_jwt_identity,
    jwt_required,
    set_access_cookies,
    unset_jwt_cookies,
)

from backend import mailer
from backend.helpers import (
    ApiError,
    error_response,
    iso_or_none,
    normalize_email,
    read_json_body,
    success_response,
)
from backend.schemas import (
    ChangePasswordInput,
    EmailInput,
    LoginInput,
    ProfileUpdateInput,
    RegisterInput,
    VerifyEmailInput,
)

ALLOWED_USER_ROLES = {"user", "admin"}


def hash_secret(value: str, rounds: int) -> bytes:
    return bcrypt.hashpw(value.encode("utf-8"), bcrypt.gensalt(rounds=rounds))


def check_secret(value: str, hashed) -> bool:
    if not hashed:
        return False
    if isinstance(hashed, str):
        hashed = hashed.encode("utf-8")
    return bcrypt.checkpw(value.encode("utf-8"), hashed)


def get_user_role(user_document, admin_email: str) -> str:
    if not user_document:
        return "user"
    if normalize_email(user_document.get("email")) == admin_email:
        return "admin"
    role = str(user_document.get("role") or "").strip().lower()
    return role if role in ALLOWED_USER_ROLES else "user"


def serialize_user_profile(user_document, admin_email: str) -> Dict[str, object]:
    if not user_document:
        return {}
    return {
        "id": str(user_document["_id"]),
        "name": user_document.get("name", "") or "",
        "email": user_document.get("email", "") or "",
        "phone": user_document.get("phone", "") or "",
        "role": get_user_role(user_document, admin_email),
        "emailVerified": bool(user_document.get("email_verified")),
        "verifiedAt": iso_or_none(user_document.get("verified_at")),
        "lastLoginAt": iso_or_none(user_document.get("last_login_at")),
        "createdAt": iso_or_none(user_document.get("created_at")),
    }


def load_current_user(db):
    current_email = normalize_email(get_jwt_identity())
    user = db.users.find_one({"email": current_email})
    if not user:
        raise ApiError(404, "User not found")
    return user


def require_admin_user(db, admin_email: str):
    """Return ``(user, None)`` for an admin caller, else ``(None, error_response)``."""
    current_email = normalize_email(get_jwt_identity())
    current_user = db.users.find_one({"email": current_email})
    if not current_user:
        return None, error_response("Authentication required", 401)
    if get_user_role(current_user, admin_email) != "admin":
        return None, error_response("Admin access required", 403)
    return current_user, None


def register_auth_routes(app: Flask, db):
    verification_codes = db.email_verification_codes
    admin_email = app.config["DEFAULT_ADMIN_EMAIL"]

    def bcrypt_rounds() -> int:
        return int(app.config["BCRYPT_ROUNDS"])

    def mail_settings() -> Dict[str, str]:
        return {"api_key": app.config["RESEND_API_KEY"], "sender": app.config["MAIL_SENDER"]}

    def persist_verification_code(email: str, code: str) -> datetime:
        expires_at = datetime.utcnow() + timedelta(
            hours=app.config["VERIFICATION_CODE_EXPIRATION_HOURS"]
        )
        verification_codes.update_one(
            {"email": email},
            {
                "$set": {
                    "email": email,
                    "code_hash": hash_secret(code, bcrypt_rounds()),
                    "expires_at": expires_at,
                    "created_at": datetime.utcnow(),
                    "failed_attempts": 0,
                }
            },
            upsert=True,
        )
        return expires_at

    def dispatch_verification_code(email: str) -> Dict[str, object]:
        code = mailer.generate_verification_code()
        expires_at = persist_verification_code(email, code)
        sent, error_details = mailer.send_verification_email(
            email,
            code,
            expiration_hours=app.config["VERIFICATION_CODE_EXPIRATION_HOURS"],
            **mail_settings(),
        )
        if not sent:
            app.logger.warning(
                "Verification email to %s was not delivered: %s", email, error_details
            )
        return {"emailSent": sent, "expiresAt": iso_or_none(expires_at)}

    @app.route("/api/auth/register", methods=["POST"])
    def register():
        data = RegisterInput.model_validate(read_json_body())

        if db.users.find_one({"email": data.email}):
            raise ApiError(409, "An account with this email already exists")

        now = datetime.utcnow()
        user_document = {
            "name": data.name,
            "email": data.email,
            "password": hash_secret(data.password, bcrypt_rounds()),
            "role": "admin" if data.email == admin_email else "user",
            "email_verified": False,
            "created_at": now,
            "updated_at": now,
        }
        if data.phone:
            user_document["phone"] = data.phone

        insert_result = db.users.insert_one(user_document)
        user_document["_id"] = insert_result.inserted_id

        delivery = dispatch_verification_code(data.email)
        return success_response(
            {
                "user": serialize_user_profile(user_document, admin_email),
                "requiresVerification": True,
                **delivery,
            },
            "Account created. Enter the verification code we emailed to continue.",
            201,
        )

    @app.route("/api/auth/verify-email", methods=["POST"])
    def verify_email():
        data = VerifyEmailInput.model_validate(read_json_body())

        user = db.users.find_one({"email": data.email})
        if not user:
            raise ApiError(404, "User not found")
        if user.get("email_verified"):
            raise ApiError(400, "Email is already verified")

        code_record = verification_codes.find_one({"email": data.email})
        if not code_record:
            raise ApiError(400, "No pending verification code. Please request a new one.")

        expires_at = code_record.get("expires_at")
        if not expires_at or expires_at < datetime.utcnow():
            verification_codes.delete_one({"_id": code_record["_id"]})
            raise ApiError(400, "The verification code has expired. Please request a new one.")

        if not check_secret(data.verification_code, code_record.get("code_hash")):
            failed_attempts = int(code_record.get("failed_attempts", 0) or 0) + 1
            if failed_attempts >= app.config["MAX_FAILED_VERIFICATION_ATTEMPTS"]:
                verification_codes.delete_one({"_id": code_record["_id"]})
                raise ApiError(
                    400, "Too many incorrect attempts. Please request a new verification code."
                )
            verification_codes.update_one(
                {"_id": code_record["_id"]},
                {"$set": {"failed_attempts": failed_attempts}},
            )
            raise ApiError(400, "The verification code is incorrect")

        verification_codes.delete_one({"_id": code_record["_id"]})

        verified_at = datetime.utcnow()
        db.users.update_one(
            {"_id": user["_id"]},
            {"$set": {"email_verified": True, "verified_at": verified_at, "updated_at": verified_at}},
        )
        user = db.users.find_one({"_id": user["_id"]})

        sent, error_details = mailer.send_welcome_email(
            data.email, user.get("name"), **mail_settings()
        )
        if not sent:
            app.logger.warning("Welcome email to %s was not delivered: %s", data.email, error_details)

        return success_response(
            {"user": serialize_user_profile(user, admin_email)}, "Email verified successfully"
        )

    @app.route("/api/auth/resend-verification", methods=["POST"])
    def resend_verification():
        data = EmailInput.model_validate(read_json_body())

        user = db.users.find_one({"email": data.email})
        if not user:
            raise ApiError(404, "User not found")
        if user.get("email_verified"):
            raise ApiError(400, "Email is already verified")

        delivery = dispatch_verification_code(data.email)
        return success_response(delivery, "Verification code sent")

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        data = LoginInput.model_validate(read_json_body())

        user = db.users.find_one({"email": data.email})
        if not user or not check_secret(data.password, user.get("password")):
            raise ApiError(401, "Invalid email or password")
        if not user.get("email_verified"):
            raise ApiError(401, "Please verify your email before logging in")

        now = datetime.utcnow()
        db.users.update_one({"_id": user["_id"]}, {"$set": {"last_login_at": now}})
        user = db.users.find_one({"_id": user["_id"]})

        role = get_user_role(user, admin_email)
        token = create_access_token(identity=data.email, additional_claims={"role": role})

        response, status_code = success_response(
            {"user": serialize_user_profile(user, admin_email), "token": token},
            "Login successful",
        )
        set_access_cookies(response, token)
        return response, status_code

    @app.route("/api/auth/logout", methods=["POST"])
    def logout():
        response, status_code = success_response(message="Logged out successfully")
        unset_jwt_cookies(response)
        return response, status_code

    @app.route("/api/user/profile", methods=["GET"])
    @jwt_required()
    def get_profile():
        user = load_current_user(db)
        return success_response(serialize_user_profile(user, admin_email), "Profile retrieved")

    @app.route("/api/user/profile", methods=["PUT"])
    @jwt_required()
    def update_profile():
        user = load_current_user(db)
        data = ProfileUpdateInput.model_validate(read_json_body())

        updates = {"name": data.name, "updated_at": datetime.utcnow()}
        if data.phone is not None:
            updates["phone"] = data.phone
        db.users.update_one({"_id": user["_id"]}, {"$set": updates})

        user = db.users.find_one({"_id": user["_id"]})
        return success_response(serialize_user_profile(user, admin_email), "Profile updated")

    @app.route("/api/user/change-password", methods=["PUT"])
    @jwt_required()
    def change_password():
        user = load_current_user(db)
        data = ChangePasswordInput.model_validate(read_json_body())

        if not check_secret(data.current_password, user.get("password")):
            raise ApiError(400, "Current password is incorrect")

        db.users.update_one(
            {"_id": user["_id"]},
            {
                "$set": {
                    "password": hash_secret(data.new_password, bcrypt_rounds()),
                    "updated_at": datetime.utcnow(),
                }
            },
        )
        app.logger.info("Password changed for %s", user.get("email"))
        return success_response(message="Password changed successfully")

    @app.route("/api/user/stats", methods=["GET"])
    @jwt_required()
    def user_stats():
        user = load_current_user(db)
        email = normalize_email(user.get("email"))

        listings = list(
            db.bikes.find({"seller_info.email": email}, {"_id": 1, "status": 1})
        )
        listing_ids = [bike["_id"] for bike in listings]
        orders_placed = db.purchase_orders.count_documents({"buyer_email": email})

        earnings = 0.0
        if listing_ids:
            for order in db.purchase_orders.find(
                {
                    "bike_id": {"$in": listing_ids},
                    "status": "confirmed",
                    "payment_status": "paid",
                }
            ):
                earnings += float(order.get("amount") or 0)

        return success_response(
            {
                "totalListings": len(listings),
                "activeListings": sum(1 for bike in listings if bike.get("status") == "active"),
                "soldListings": sum(1 for bike in listings if bike.get("status") == "sold"),
                "totalOrders": orders_placed,
                "totalEarnings": round(earnings, 2),
            },
            "User stats retrieved",
        )
