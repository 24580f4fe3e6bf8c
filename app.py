import logging

from flask import Blueprint, Flask, current_app, flash, g, redirect, render_template, request, session, url_for
from werkzeug.exceptions import HTTPException

from auth import AuthError, GoogleVerifier, complete_login
from config import Config
from matches import load_catalog
from sessions import SESSION_STATE_KEY, is_authenticated, load_current_user, login_session, logout_session
from store import CREATED, StoreError, init_store

logger = logging.getLogger(__name__)

# Largest value the INTEGER columns hold on every backend.
MAX_FORM_INT = 2**31 - 1

bp = Blueprint("main", __name__)


def configure_logging(level="INFO"):
    # Configure the root logger once; leave it alone if the host already did.
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        )


def parse_non_negative_int(value):
    """Returns the form value as an int, or None unless it is a whole number in 0..MAX_FORM_INT."""
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return number if 0 <= number <= MAX_FORM_INT else None


def get_store():
    return current_app.extensions["store"]


def get_verifier():
    return current_app.extensions["verifier"]


@bp.app_errorhandler(Exception)
def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        return e
    logger.exception("Unexpected error on %s %s", request.method, request.path)
    return "Unexpected error occurred", 500


# --- ROUTES ---
@bp.route("/")
def index():
    return render_template("index.html", user=g.user)


@bp.route("/check_db")
def check_db():
    try:
        get_store().ping()
        return "Database connection successful!", 200
    except StoreError as e:
        logger.error("Database check failed: %s", e)
        return f"Database connection failed: {e}", 500


@bp.route("/auth/start")
def auth_start():
    if is_authenticated():
        return redirect(url_for("main.profile"))

    verifier = get_verifier()
    state = verifier.new_state()
    try:
        url = verifier.authorize_url(state)
    except AuthError as e:
        logger.error("Could not start login: %s", e)
        flash("Login is not available right now.", "error")
        return redirect(url_for("main.index"))
    session[SESSION_STATE_KEY] = state
    return redirect(url)


@bp.route("/auth/callback")
def auth_callback():
    expected_state = session.pop(SESSION_STATE_KEY, None)
    try:
        identity = get_verifier().verify(request.args, expected_state)
        user = complete_login(get_store(), identity)
    except AuthError as e:
        logger.error("Login failed: %s", e)
        flash("Login failed. Please try again.", "error")
        return redirect(url_for("main.index"))
    except Exception:
        logger.exception("Unexpected error during login")
        flash("Login failed. Please try again.", "error")
        return redirect(url_for("main.index"))

    login_session(user)
    logger.info("User %s logged in", user["id"])
    flash(f"Welcome, {user.get('display_name') or 'player'}!", "success")
    return redirect(url_for("main.profile"))


@bp.route("/profile")
def profile():
    if not is_authenticated():
        return redirect(url_for("main.index"))

    try:
        predictions = get_store().list_predictions(g.user["id"])
    except StoreError as e:
        logger.error("Error fetching predictions for user %s: %s", g.user["id"], e)
        return "Error fetching predictions", 500

    predictions_by_match = {p["match_id"]: p for p in predictions}
    return render_template("profile.html", user=g.user, matches=current_app.extensions["matches"].list(),
                           predictions=predictions_by_match)


@bp.route("/submit-prediction", methods=["POST"])
def submit_prediction():
    if not is_authenticated():
        return redirect(url_for("main.index"))

    match_id = parse_non_negative_int(request.form.get("matchId"))
    team1_score = parse_non_negative_int(request.form.get("team1_score"))
    team2_score = parse_non_negative_int(request.form.get("team2_score"))
    if match_id is None or team1_score is None or team2_score is None:
        flash("Scores must be whole numbers.", "error")
        return redirect(url_for("main.profile"))

    try:
        outcome = get_store().save_prediction(g.user["id"], match_id, team1_score, team2_score)
    except StoreError as e:
        logger.error("Error saving prediction for user %s, match %s: %s", g.user["id"], match_id, e)
        flash("Your prediction could not be saved. Please try again.", "error")
        return redirect(url_for("main.profile"))

    logger.info("Prediction %s for user %s, match %s: %s-%s",
                outcome, g.user["id"], match_id, team1_score, team2_score)
    flash("Prediction saved!" if outcome == CREATED else "Prediction updated!", "success")
    return redirect(url_for("main.profile"))


@bp.route("/logout")
def logout():
    logout_session()
    flash("Logged out successfully.", "success")
    return redirect(url_for("main.index"))


def create_app(config=None, store=None, verifier=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config:
        app.config.update(config)
    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    app.extensions["store"] = store if store is not None else init_store(app)
    app.extensions["verifier"] = verifier if verifier is not None else GoogleVerifier.from_config(app.config)
    app.extensions["matches"] = load_catalog(app.config.get("MATCHES_FILE"))

    app.before_request(load_current_user)
    app.register_blueprint(bp)
    return app


if __name__ == "__main__":
    app = create_app()
    with app.app_context():
        for rule in app.url_map.iter_rules():
            logger.debug("Endpoint: %s, URL: %s", rule.endpoint, rule)
    logger.info("App running on http://localhost:%s", app.config["PORT"])
    app.run(port=app.config["PORT"])
