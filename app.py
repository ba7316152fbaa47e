# app.py
"""
ETMS Admin API
- Flask backend, JSON-only endpoints
- Flask-Login authentication (session-based) for admins
- MongoDB via PyMongo, injected as a repository
- Customer directory and dashboard analytics derived from order records
"""
from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from bson import ObjectId
from flask import Blueprint, Flask, Response, current_app, jsonify, request
from flask_login import LoginManager, UserMixin, current_user, login_required, login_user, logout_user
from werkzeug.exceptions import HTTPException
from werkzeug.security import check_password_hash, generate_password_hash

from address import state_name
from customers import CustomerAggregate, CustomerDirectory, SegmentThresholds, now_utc
from dashboard import DashboardService
from errors import ApiError, Conflict, NotFound, ValidationError
from repository import MongoRepository
from settings import Settings, configure_logging
from stock import StockService

logger = logging.getLogger("etms")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

EXTENSION_KEY = "etms"


# -------------------------
# API Responses
# -------------------------
def jsonable(value: Any) -> Any:
    """Make store documents JSON-safe: ObjectId -> str, datetime -> ISO 8601."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    return value


def ok(payload: Dict[str, Any] | None = None, status: int = 200) -> Tuple[Response, int]:
    data = {"success": True}
    if payload:
        data.update(payload)
    return jsonify(jsonable(data)), status


def succeeded(message: str, payload: Dict[str, Any] | None = None, status: int = 200) -> Tuple[Response, int]:
    data: Dict[str, Any] = {"status": "SUCCESS", "message": message}
    if payload:
        data.update(payload)
    return jsonify(jsonable(data)), status


def fail(err: ApiError) -> Tuple[Response, int]:
    data: Dict[str, Any] = {"success": False, "status": "FAILED", "message": err.message, "code": err.code}
    if err.details:
        data["details"] = err.details
    return jsonify(jsonable(data)), err.status


def require_json() -> Dict[str, Any]:
    if not request.is_json:
        raise ApiError("Request must be JSON.", 415, "unsupported_media_type")
    data = request.get_json(silent=True)
    if data is None:
        raise ApiError("Invalid JSON payload.", 400, "invalid_json")
    if not isinstance(data, dict):
        raise ApiError("JSON body must be an object.", 400, "invalid_json")
    return data


def safe_int(value: Any, field: str, default: int, min_value: Optional[int] = None,
             max_value: Optional[int] = None) -> int:
    if value is None or value == "":
        return default
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer.", details={"field": field})
    if min_value is not None and n < min_value:
        raise ValidationError(f"{field} must be >= {min_value}.", details={"field": field})
    if max_value is not None and n > max_value:
        raise ValidationError(f"{field} must be <= {max_value}.", details={"field": field})
    return n


def services() -> Dict[str, Any]:
    return current_app.extensions[EXTENSION_KEY]


# -------------------------
# Auth (Flask-Login)
# -------------------------
login_manager = LoginManager()
login_manager.session_protection = "strong"


class Admin(UserMixin):
    def __init__(self, doc: Dict[str, Any]):
        self.doc = doc
        self.id = str(doc["_id"])
        self.email = doc.get("email", "")
        self.name = doc.get("name", "")

    @property
    def is_super_admin(self) -> bool:
        return bool(self.doc.get("is_super_admin"))


@login_manager.user_loader
def load_admin(admin_id: str) -> Optional[Admin]:
    if not ObjectId.is_valid(admin_id):
        return None
    doc = services()["repository"].find_admin_by_id(ObjectId(admin_id))
    return Admin(doc) if doc else None


@login_manager.unauthorized_handler
def unauthorized():
    # JSON only
    return fail(ApiError("Authentication required.", 401, "unauthorized"))


def require_super_admin(fn):
    def wrapped(*args, **kwargs):
        if not current_user.is_authenticated:
            return unauthorized()
        if not current_user.is_super_admin:
            return fail(ApiError("Not authorized as a super admin.", 403, "forbidden"))
        return fn(*args, **kwargs)

    # keep function identity (Flask uses __name__)
    wrapped.__name__ = fn.__name__
    wrapped.__doc__ = fn.__doc__
    return wrapped


def validate_email(email: Any) -> str:
    email = (email or "").strip().lower() if isinstance(email, str) else ""
    if not EMAIL_RE.match(email):
        raise ValidationError("A valid email is required.", details={"field": "email"})
    return email


def validate_password(pw: Any) -> str:
    pw = pw if isinstance(pw, str) else ""
    if len(pw) < 6:
        raise ValidationError("Password must be at least 6 characters.", details={"field": "password"})
    return pw


# -------------------------
# Serialization helpers
# -------------------------
def public_admin(a: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(a["_id"]),
        "name": a.get("name", ""),
        "email": a.get("email", ""),
        "isSuperAdmin": bool(a.get("is_super_admin")),
    }


def public_customer(c: CustomerAggregate) -> Dict[str, Any]:
    return {
        "id": c.email,
        "name": c.name or "Unknown Customer",
        "email": c.email,
        "phone": c.phone or "",
        "address": c.address or {},
        "customerType": c.customer_type,
        "stats": {
            "totalOrders": c.total_orders,
            "totalSpent": c.total_spent,
            "firstOrderDate": c.first_order_date,
            "lastOrderDate": c.last_order_date,
        },
        "createdAt": c.first_order_date,
        "updatedAt": c.last_order_date,
    }


def public_order(o: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(o.get("_id")),
        "orderNumber": o.get("orderNumber"),
        "customerInfo": o.get("customerInfo") or {},
        "items": o.get("items") or [],
        "subtotal": o.get("subtotal", 0),
        "shippingCost": o.get("shippingCost", 0),
        "total": o.get("total", 0),
        "paymentStatus": o.get("paymentStatus"),
        "status": o.get("status"),
        "createdAt": o.get("createdAt"),
        "completedAt": o.get("completedAt"),
    }


def customer_detail(c: CustomerAggregate) -> Dict[str, Any]:
    out = public_customer(c)
    out["stats"]["averageOrderValue"] = c.average_order_value
    out["orders"] = [public_order(o) for o in c.orders]
    return out


def public_customer_record(doc: Dict[str, Any]) -> Dict[str, Any]:
    address = dict(doc.get("address") or {})
    address["stateName"] = state_name(address.get("state"))
    return {
        "id": str(doc["_id"]),
        "firstName": doc.get("firstName", ""),
        "lastName": doc.get("lastName", ""),
        "email": doc.get("email", ""),
        "phone": doc.get("phone", ""),
        "address": address,
        "createdAt": doc.get("createdAt"),
        "deletedAt": doc.get("deletedAt", 0),
    }


# -------------------------
# Default Admin Seed
# -------------------------
def ensure_default_admin(repository, settings: Settings) -> None:
    email = settings.default_admin_email.strip().lower()
    if repository.find_admin_by_email(email):
        return
    repository.insert_admin(
        {
            "name": "Administrator",
            "email": email,
            "password_hash": generate_password_hash(settings.default_admin_password),
            "is_super_admin": True,
            "created_at": now_utc(),
        }
    )
    logger.info("Default admin created: %s", email)


# -------------------------
# Routes
# -------------------------
api = Blueprint("api", __name__, url_prefix="/api")


@api.get("/health")
def health():
    return ok({"status": "up"})


# Admin APIs
@api.post("/admins/login")
def login():
    data = require_json()
    email = validate_email(data.get("email"))
    password = data.get("password") if isinstance(data.get("password"), str) else ""

    a = services()["repository"].find_admin_by_email(email)
    if not a or not check_password_hash(a.get("password_hash", ""), password):
        raise ApiError("Invalid email or password.", 401, "unauthorized")

    login_user(Admin(a))
    return ok({"admin": public_admin(a)})


@api.post("/admins/logout")
@login_required
def logout():
    logout_user()
    return ok({"message": "Logged out successfully"})


@api.get("/admins/profile")
@login_required
def get_profile():
    a = services()["repository"].find_admin_by_id(ObjectId(current_user.id))
    if not a:
        raise NotFound("Admin not found.")
    return ok({"admin": public_admin(a)})


@api.put("/admins/profile")
@login_required
def update_profile():
    data = require_json()
    repo = services()["repository"]
    updates: Dict[str, Any] = {}
    if data.get("name"):
        updates["name"] = str(data["name"]).strip()
    if data.get("email"):
        email = validate_email(data["email"])
        other = repo.find_admin_by_email(email)
        if other and str(other["_id"]) != current_user.id:
            raise Conflict("Email already registered.", details={"field": "email"})
        updates["email"] = email
    if data.get("password"):
        updates["password_hash"] = generate_password_hash(validate_password(data["password"]))

    admin_id = ObjectId(current_user.id)
    a = repo.update_admin(admin_id, updates) if updates else repo.find_admin_by_id(admin_id)
    if not a:
        raise NotFound("Admin not found.")
    return ok({"admin": public_admin(a)})


@api.post("/admins")
@require_super_admin
def register_admin():
    data = require_json()
    repo = services()["repository"]
    email = validate_email(data.get("email"))
    password = validate_password(data.get("password"))
    name = (data.get("name") or "").strip() if isinstance(data.get("name"), str) else ""
    if not name:
        raise ValidationError("Name is required.", details={"field": "name"})
    if repo.find_admin_by_email(email):
        raise Conflict("Admin already exists.", details={"field": "email"})

    a = repo.insert_admin(
        {
            "name": name,
            "email": email,
            "password_hash": generate_password_hash(password),
            "is_super_admin": bool(data.get("isSuperAdmin", False)),
            "created_at": now_utc(),
        }
    )
    logger.info("Admin registered: %s by %s", email, current_user.email)
    return ok({"admin": public_admin(a)}, 201)


@api.get("/admins")
@require_super_admin
def list_admins():
    return ok({"admins": [public_admin(a) for a in services()["repository"].list_admins()]})


# Customer APIs
@api.get("/customers")
@login_required
def list_customers():
    settings: Settings = services()["settings"]
    page = safe_int(request.args.get("page"), "page", 1, min_value=1)
    limit = safe_int(request.args.get("limit"), "limit", 10, min_value=1, max_value=settings.max_page_size)
    search = (request.args.get("search") or "").strip()
    segment = (request.args.get("type") or "all").strip()

    result = services()["customers"].list_customers(page=page, limit=limit, search=search, segment=segment)
    return ok(
        {
            "data": [public_customer(c) for c in result.items],
            "pagination": {
                "total": result.total,
                "page": result.page,
                "limit": result.limit,
                "totalPages": result.total_pages,
            },
        }
    )


@api.get("/customers/analytics")
def customer_analytics():
    a = services()["customers"].analytics()
    return ok(
        {
            "data": {
                "totalCustomers": a.total_customers,
                "newCustomersThisMonth": a.new_customers_this_month,
                "newCustomersLastMonth": a.new_customers_last_month,
                "totalRevenue": a.total_revenue,
                "totalOrders": a.total_orders,
                "averageOrderValue": a.average_order_value,
                "customersByType": a.customers_by_type,
            }
        }
    )


@api.get("/customers/<email>")
@login_required
def get_customer(email: str):
    customer = services()["customers"].get_customer(email)
    return succeeded("Customer found", {"data": customer_detail(customer)})


@api.post("/customers")
@login_required
def create_customer():
    data = require_json()
    doc = services()["customers"].create_record(data)
    return succeeded("Customer added successfully", {"data": public_customer_record(doc)}, 201)


@api.put("/customers/<customer_id>")
@login_required
def update_customer(customer_id: str):
    data = require_json()
    doc = services()["customers"].update_record(customer_id, data)
    return succeeded("Customer updated successfully", {"data": public_customer_record(doc)})


@api.delete("/customers/<customer_id>")
@login_required
def delete_customer(customer_id: str):
    services()["customers"].delete_record(customer_id)
    return succeeded("Customer deleted successfully")


# Dashboard APIs
@api.get("/dashboard/stats")
def dashboard_stats():
    return ok({"data": services()["dashboard"].stats()})


@api.get("/dashboard/insights")
def dashboard_insights():
    return ok({"data": services()["dashboard"].insights()})


# Stock APIs
@api.get("/stock/status")
def stock_status():
    return succeeded("Stock status", {"data": services()["stock"].status()})


@api.get("/stock/low-stock")
@login_required
def low_stock():
    return succeeded("Low stock products", {"data": services()["stock"].low_stock()})


@api.put("/stock/bulk-update")
@login_required
def bulk_update_stock():
    data = require_json()
    result = services()["stock"].bulk_update(data.get("updates"))
    applied = len(result.applied)
    return succeeded(
        f"Updated {applied} of {len(result.items)} products",
        {
            "data": {
                "results": [i.as_dict() for i in result.items],
                "summary": result.counts(),
                "partialFailure": result.partial_failure,
            }
        },
    )


# -------------------------
# App Init
# -------------------------
def create_app(settings: Optional[Settings] = None, repository=None) -> Flask:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    if repository is None:
        repository = MongoRepository.connect(settings)

    app = Flask(__name__)
    app.config.update(
        SECRET_KEY=settings.secret_key,
        SESSION_COOKIE_SECURE=settings.session_cookie_secure,
        SESSION_COOKIE_SAMESITE=settings.session_cookie_samesite,
        SESSION_COOKIE_HTTPONLY=True,
    )

    thresholds = SegmentThresholds(
        vip_spend=settings.vip_spend_threshold,
        loyal_orders=settings.loyal_order_threshold,
        regular_orders=settings.regular_order_threshold,
    )
    directory = CustomerDirectory(
        repository,
        thresholds=thresholds,
        history_limit=settings.customer_history_limit,
        order_limit=settings.analytics_order_limit,
    )
    app.extensions[EXTENSION_KEY] = {
        "settings": settings,
        "repository": repository,
        "customers": directory,
        "dashboard": DashboardService(
            repository,
            directory,
            low_stock_threshold=settings.low_stock_threshold,
            recent_orders_limit=settings.recent_orders_limit,
        ),
        "stock": StockService(repository, low_stock_threshold=settings.low_stock_threshold),
    }

    login_manager.init_app(app)
    app.register_blueprint(api)

    # Attach a request id for debugging/traceability.
    @app.before_request
    def attach_request_id():
        rid = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.environ["request_id"] = rid

    @app.after_request
    def add_security_headers(resp: Response):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Cache-Control"] = "no-store"
        resp.headers["X-Request-Id"] = request.environ.get("request_id", "")
        return resp

    @app.errorhandler(ApiError)
    def handle_api_error(err: ApiError):
        if err.status >= 500:
            logger.error("Request failed (request_id=%s): %s", request.environ.get("request_id", ""), err.message)
        return fail(err)

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        if e.code is not None and e.code < 400:
            return e
        code = (e.name or "error").lower().replace(" ", "_")
        return fail(ApiError(e.description or e.name, e.code or 500, code))

    @app.errorhandler(Exception)
    def handle_exception(e: Exception):
        rid = request.environ.get("request_id", "")
        logger.exception("Unhandled error (request_id=%s): %s", rid, e)
        return fail(ApiError("Internal server error.", 500, "internal_error", {"request_id": rid}))

    if settings.seed_default_admin:
        try:
            ensure_default_admin(repository, settings)
        except ApiError:
            logger.exception("Failed to ensure default admin user")

    return app


if __name__ == "__main__":
    # Production: run behind a WSGI server (gunicorn "app:create_app()") and set SECRET_KEY + SESSION_COOKIE_SECURE
    cfg = Settings.from_env()
    create_app(cfg).run(host=cfg.host, port=cfg.port, debug=cfg.debug)
