import logging
import os
import sys
from typing import Optional

import click
import jwt  # type: ignore[import]
import structlog
from flask import Flask, Response, g, request
from flask.cli import with_appcontext
from flask_cors import CORS
from werkzeug.exceptions import HTTPException


def configure_logging() -> None:
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=logging.INFO)
    structlog.configure(
        context_class=dict,
        wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
        logger_factory=structlog.stdlib.LoggerFactory(),
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
    )
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    logging.getLogger("flask.app").setLevel(logging.WARNING)


configure_logging()

from extensions import config_store, connection_manager, db, migrate, setup_gate  # noqa: E402
from infra import health_service  # noqa: E402
from models import User  # noqa: E402,F401 - ensure models registered
from security import ValidationError, error_response, require_api_key  # noqa: E402

logger = structlog.get_logger("steward.backend")

app = Flask(__name__)


def _resolve_cors_origins() -> list[str]:
    raw = os.environ.get("CORS_ALLOW_ORIGINS", "")
    if raw.strip():
        parsed = [origin.strip() for origin in raw.split(",") if origin.strip()]
        if parsed:
            return parsed
    return ["http://localhost:5173", "http://127.0.0.1:5173"]


CORS(
    app,
    origins=_resolve_cors_origins(),
    supports_credentials=True,
    allow_headers=["Content-Type", "Authorization", "X-CSRF-Token", "X-API-Key"],
)


def _resolve_database_uri() -> str:
    direct_uri = os.environ.get("DATABASE_URL")
    if direct_uri:
        return direct_uri

    user = os.environ.get("POSTGRES_USER")
    password = os.environ.get("POSTGRES_PASSWORD")
    database = os.environ.get("POSTGRES_DB")
    host = os.environ.get("POSTGRES_HOST", "localhost")
    port = os.environ.get("POSTGRES_PORT", "5432")

    if user and password and database:
        return f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{database}"

    data_dir = os.path.join(app.root_path, "data")
    os.makedirs(data_dir, exist_ok=True)
    return f"sqlite:///{os.path.join(data_dir, 'auth.db')}"


app.config["SQLALCHEMY_DATABASE_URI"] = _resolve_database_uri()
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
app.config["STEWARD_CONFIG_PATH"] = os.environ.get("STEWARD_CONFIG_PATH")
app.config["BULK_MAX_WORKERS"] = int(os.environ.get("BULK_MAX_WORKERS", "8"))
app.config.setdefault(
    "RATE_LIMITS",
    {
        "bulk_action": {"limit": 30, "window": 60},
    },
)
app.config["API_KEY"] = os.environ.get("STEWARD_API_KEY")
app.config.setdefault("JWT_SECRET", os.environ.get("STEWARD_JWT_SECRET") or "change-me")
app.config.setdefault("JWT_ALGORITHM", "HS256")
app.config.setdefault(
    "JWT_EXP_MINUTES", int(os.environ.get("STEWARD_JWT_EXP_MINUTES", "60"))
)
# Endpoints that decide for themselves whether a token is needed.
app.config.setdefault(
    "PUBLIC_ENDPOINTS",
    {
        "admin.home",
        "admin.health",
        "activity.list_activity",
        "activity.log_activity",
        "setup.status",
        "setup.run_setup",
    },
)

db.init_app(app)
migrate.init_app(app, db)
config_store.init_app(app)

ERROR_CODE_BY_STATUS = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    415: "unsupported_media_type",
    429: "too_many_requests",
    500: "internal_error",
    502: "bad_gateway",
    503: "service_unavailable",
}

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}


def _decode_access_token(token: str) -> dict:
    return jwt.decode(
        token,
        app.config["JWT_SECRET"],
        algorithms=[app.config.get("JWT_ALGORITHM", "HS256")],
    )


def _is_public_endpoint(endpoint: Optional[str]) -> bool:
    if not endpoint:
        return False
    if endpoint.startswith("static"):
        return True
    public = app.config.get("PUBLIC_ENDPOINTS", set())
    if endpoint in public:
        return True
    endpoint_name = endpoint.split(".", 1)[-1]
    return endpoint_name in public


@app.before_request
def _enforce_api_key():
    auth_result = require_api_key()
    if auth_result:
        return auth_result


@app.before_request
def _enforce_jwt_authentication():
    if request.method == "OPTIONS":  # preflight requests are exempt
        return None

    public = _is_public_endpoint(request.endpoint)

    def reject(code: str, message: str, status: int):
        # Public endpoints fall back to an anonymous caller instead.
        return None if public else error_response(code, message, status)

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return reject("unauthorized", "Missing or invalid access token", 401)

    token = auth_header.split(" ", 1)[1].strip()
    if not token:
        return reject("unauthorized", "Missing or invalid access token", 401)

    try:
        payload = _decode_access_token(token)
    except jwt.ExpiredSignatureError:
        return reject("token_expired", "Access token expired", 401)
    except jwt.InvalidTokenError:
        return reject("unauthorized", "Invalid access token", 401)

    user_id = payload.get("sub")
    if not user_id:
        return reject("unauthorized", "Invalid access token", 401)

    csrf_claim = payload.get("csrf")
    if not csrf_claim:
        return reject("invalid_csrf", "Missing CSRF token claim", 403)

    role = payload.get("role") or "user"
    g.current_user = {
        "id": str(user_id),
        "email": payload.get("email"),
        "name": payload.get("name") or "",
        "role": role,
        "is_admin": role == "admin",
    }
    g.csrf_token = csrf_claim

    if request.method not in SAFE_METHODS:
        csrf_header = request.headers.get("X-CSRF-Token")
        if not csrf_header or csrf_header != csrf_claim:
            return error_response("invalid_csrf", "Missing or invalid CSRF token", 403)

    return None


@app.after_request
def _log_request(response: Response):
    logger.bind(
        method=request.method,
        path=request.path,
        status_code=response.status_code,
        user_id=getattr(g, "current_user", {}).get("id"),
    ).info("request.completed")
    return response


@app.errorhandler(ValidationError)
def handle_validation(error: ValidationError):
    logger.bind(status_code=error.status, error_code=error.code).warning(
        "request.validation_error",
        details=error.details,
        message=error.message,
    )
    return error_response(error.code, error.message, error.status, error.details)


@app.errorhandler(HTTPException)
def handle_http_exception(exc: HTTPException):
    status = exc.code or 500
    message = exc.description or exc.name or "HTTP error"
    code = ERROR_CODE_BY_STATUS.get(status)
    if code is None:
        code = "internal_error" if status >= 500 else "bad_request"
    log_method = logger.error if status >= 500 else logger.warning
    log_method(
        "request.http_exception",
        status_code=status,
        error_code=code,
        description=message,
    )
    return error_response(code, message, status)


@app.errorhandler(Exception)
def handle_unexpected_exception(exc: Exception):
    logger.bind(status_code=500).exception(
        "request.unhandled_exception", error=str(exc)
    )
    return error_response("internal_error", "An unexpected error occurred", 500)


@app.cli.command("health")
@with_appcontext
def health_command():
    summary, healthy = health_service.build_health_summary(
        setup_gate, config_store, connection_manager
    )
    status_label = "HEALTHY" if healthy else "UNHEALTHY"
    click.echo("Health:")
    for key, value in summary.items():
        click.echo(f"{key}: {value}")
    click.echo(f"Status: {status_label}")


from controllers import register_controllers  # noqa: E402

register_controllers(app)


if __name__ == "__main__":
    debug = os.environ.get("FLASK_DEBUG", "0").lower() in ("1", "true", "yes")
    app.run(
        host=os.environ.get("FLASK_RUN_HOST", "0.0.0.0"),
        port=int(os.environ.get("FLASK_RUN_PORT", os.environ.get("PORT", "5000"))),
        debug=debug,
    )
