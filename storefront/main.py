# storefront/main.py
import logging
import time

from flask import Flask, g, jsonify, request, session

from storefront.blueprints import ALL_BLUEPRINTS
from storefront.blueprints.common import current_user
from storefront.config import Config
from storefront.database import close_db, get_db, init_database
from storefront.models import Profile
from storefront.observability import (
    check_database_health,
    check_media_storage_health,
    configure_logging,
    get_metrics_snapshot,
    increment_counter,
    observe_latency,
)
from storefront.observability.logging_config import ensure_request_id

app = Flask(__name__)
Config.configure_app(app)
configure_logging(app)
for blueprint in ALL_BLUEPRINTS:
    app.register_blueprint(blueprint)

logger = logging.getLogger(__name__)

init_database()
logger.info("Database tables initialized", extra={"app_name": Config.APP_NAME})


@app.before_request
def before_request_logging():
    g.current_user = None
    if 'user_id' in session:
        db = get_db()
        g.current_user = db.query(Profile).filter_by(id=session['user_id']).first()
        if g.current_user is None:
            # Account was removed while the session was alive
            session.pop('user_id', None)
    g.user_role = g.current_user.role if g.current_user is not None else None
    g.request_started_at = time.perf_counter()
    g.request_id = ensure_request_id()
    increment_counter(
        "http_requests_total",
        labels={
            "method": request.method,
            "endpoint": request.endpoint or request.path,
        },
    )


@app.after_request
def after_request_logging(response):
    started = getattr(g, 'request_started_at', None)
    if started is not None:
        duration_ms = (time.perf_counter() - started) * 1000
        observe_latency(
            "http_request_latency_ms",
            duration_ms,
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
                "status": str(response.status_code),
            },
        )
    response.headers[Config.REQUEST_ID_HEADER] = getattr(g, 'request_id', '') or ''
    if response.status_code >= 500:
        increment_counter(
            "http_errors_total",
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
                "status": str(response.status_code),
            },
        )
        logger.error("Request finished with error status %s", response.status_code)
    else:
        logger.info("Request finished", extra={"status_code": response.status_code})
    return response


@app.teardown_appcontext
def teardown_db(exception):
    try:
        close_db(exception)
    except RuntimeError:
        # Outside an application context during tests
        pass


@app.route('/health', methods=['GET'])
def health():
    db_status = check_database_health()
    media_status = check_media_storage_health()
    overall = "UP" if db_status.get("status") == "UP" and media_status.get("status") == "UP" else "DEGRADED"
    status_code = 200 if overall == "UP" else 503
    return jsonify({
        "status": overall,
        "components": {
            "database": db_status,
            "media_storage": media_status,
        }
    }), status_code


@app.route('/admin/metrics', methods=['GET'])
def admin_metrics():
    user = current_user()
    if user is None:
        return jsonify({"error": "Not authenticated"}), 401
    if not user.is_admin:
        return jsonify({"error": "Forbidden"}), 403
    return jsonify(get_metrics_snapshot())


@app.errorhandler(404)
def not_found(_error):
    return jsonify({"error": "Not found"}), 404


@app.errorhandler(500)
def internal_error(error):
    logger.exception("Unhandled error: %s", error)
    return jsonify({"error": "Internal server error"}), 500
