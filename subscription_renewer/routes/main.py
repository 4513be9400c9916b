from flask import Blueprint, current_app, jsonify

from subscription_renewer.controllers.renewal_controller import get_renewer
from subscription_renewer.utils.async_utils import run_in_background

main_bp = Blueprint("main", __name__)


@main_bp.route("/health", methods=["GET"])
def health():
    renewer = get_renewer()
    scheduler = current_app.extensions.get("renewal_scheduler")
    last = renewer.last_summary
    return jsonify({
        "status": "ok",
        "scheduler_running": bool(scheduler and scheduler.running),
        "renewal_running": renewer.running,
        "last_run": last.to_dict() if last else None
    })


@main_bp.route("/renewals/run", methods=["POST"])
def trigger_renewal():
    renewer = get_renewer()
    if renewer.running:
        return jsonify({"status": "already_running"}), 409

    app = current_app._get_current_object()
    current_app.logger.info("▶️ Manual renewal run requested")
    run_in_background(app, renewer.run)
    return jsonify({"status": "started"}), 202
