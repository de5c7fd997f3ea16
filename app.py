import os
import logging
import uuid
from flask import Flask, render_template, jsonify, g, Response, url_for
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv
from og_config import DEFAULT_CONFIG, default_assets_dir
from og_image import ImageComposer, OgImageError, AssetStore

load_dotenv()

# ---------------------------------------------------------------------------
# Sentry error tracking: gated on SENTRY_DSN, silent when unset (local dev)
# ---------------------------------------------------------------------------
_sentry_dsn = os.environ.get("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    from og_image import AssetNotFoundError

    def _sentry_before_send(event, hint):
        """Demote missing-asset failures to breadcrumbs; they are deploy problems, not bugs."""
        exc_info = hint.get("exc_info")
        if exc_info:
            exc_type, exc_value, _ = exc_info
            if exc_type is not None and issubclass(exc_type, AssetNotFoundError):
                sentry_sdk.add_breadcrumb(
                    category="assets",
                    message=str(exc_value),
                    level="warning",
                )
                return None
        return event

    sentry_sdk.init(
        dsn=_sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        release=os.environ.get("RAILWAY_GIT_COMMIT_SHA"),
        environment=os.environ.get("RAILWAY_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

app = Flask(__name__)
app.config["OG_ASSETS_DIR"] = default_assets_dir()
app.config["OG_CARD_CONFIG"] = DEFAULT_CONFIG
app.config["OG_CACHE_MAX_AGE"] = int(os.environ.get("OG_CACHE_MAX_AGE", "86400"))

# Proxy fix: most PaaS run behind a reverse proxy that sets
# X-Forwarded-For.  ProxyFix rewrites request.remote_addr to the real
# client IP so both Flask-Limiter and logging see the correct address.
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rate limiting: image rendering is the only CPU-heavy route.
# In-memory storage is per-process (with 2 gunicorn workers the effective
# limit is ~2x nominal).
# ---------------------------------------------------------------------------
RATE_LIMIT_DEFAULT = os.environ.get("RATE_LIMIT_DEFAULT", "60/minute")
RATE_LIMIT_OG = os.environ.get("RATE_LIMIT_OG", "30/minute")

limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[RATE_LIMIT_DEFAULT],
    storage_uri="memory://",
)
logging.getLogger("flask-limiter").setLevel(logging.WARNING)

DEMO_TITLE = "My App"


def _generate_request_id():
    return uuid.uuid4().hex[:10]


def _composer():
    return ImageComposer(app.config["OG_CARD_CONFIG"], assets_dir=app.config["OG_ASSETS_DIR"])


def _missing_assets():
    store = AssetStore(app.config["OG_ASSETS_DIR"])
    return store.missing(app.config["OG_CARD_CONFIG"].branding.asset_names())


def _undecodable_assets(missing):
    """Image assets that exist but cannot be decoded (bad data, no cairo for SVG)."""
    store = AssetStore(app.config["OG_ASSETS_DIR"])
    broken = []
    for name in app.config["OG_CARD_CONFIG"].branding.image_names():
        if name in missing:
            continue
        try:
            store.load_image(name)
        except OgImageError as e:
            logger.warning("Health check cannot decode %s: %s", name, e)
            broken.append(name)
    return broken


@app.before_request
def _set_request_context():
    g.request_id = _generate_request_id()


@app.after_request
def _after_request(response):
    response.headers["X-Request-ID"] = getattr(g, "request_id", "unknown")
    return response


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.route("/")
def index():
    """Demo page that embeds the card and advertises it to crawlers."""
    card = app.config["OG_CARD_CONFIG"]
    og_url = url_for("og_image", name=DEMO_TITLE, _external=True)
    try:
        logo_uri = AssetStore(app.config["OG_ASSETS_DIR"]).data_uri(card.branding.logo)
    except OgImageError:
        logo_uri = None
    return render_template(
        "index.html",
        logo_uri=logo_uri,
        title=DEMO_TITLE,
        og_url=og_url,
        og_path=url_for("og_image", name=DEMO_TITLE),
        width=card.layout.width,
        height=card.layout.height,
    )


@app.route("/og/<path:name>")
@limiter.limit(RATE_LIMIT_OG)
def og_image(name):
    """Render the OG card for a title taken from the URL path."""
    request_id = getattr(g, "request_id", "unknown")
    try:
        data = _composer().compose(name)
    except OgImageError:
        logger.exception("[%s] OG image generation failed for %r", request_id, name)
        return jsonify({
            "error": "Image generation failed",
            "request_id": request_id,
        }), 500

    resp = Response(data, mimetype="image/jpeg")
    resp.headers["Cache-Control"] = f"public, max-age={app.config['OG_CACHE_MAX_AGE']}"
    return resp


@app.route("/healthz")
@limiter.exempt
def healthz():
    """Lightweight health-check endpoint for monitoring."""
    missing = _missing_assets()
    undecodable = _undecodable_assets(missing)
    healthy = not missing and not undecodable
    return jsonify({
        "status": "ok" if healthy else "degraded",
        "missing_assets": missing,
        "undecodable_assets": undecodable,
    }), 200 if healthy else 503


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.errorhandler(429)
def rate_limit_exceeded(e):
    return jsonify({
        "error": "Too many requests. Please wait and try again.",
        "request_id": getattr(g, "request_id", "unknown"),
    }), 429


@app.errorhandler(404)
def not_found(e):
    return jsonify({
        "error": "Not found",
        "request_id": getattr(g, "request_id", "unknown"),
    }), 404


@app.errorhandler(500)
def internal_error(e):
    return jsonify({
        "error": "Internal server error",
        "request_id": getattr(g, "request_id", "unknown"),
    }), 500


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------

_startup_missing = _missing_assets()
if _startup_missing:
    logger.warning(
        "OG assets missing from %s: %s. Image requests will fail until they are added.",
        app.config["OG_ASSETS_DIR"], ", ".join(_startup_missing),
    )

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5001))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
