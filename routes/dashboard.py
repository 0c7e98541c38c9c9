from flask import Blueprint, current_app, g, jsonify, redirect

from security.auth_gate import auth_check

dashboard_bp = Blueprint("dashboard", __name__)


@dashboard_bp.get("/")
def index():
    return redirect("/dashboard/")


@dashboard_bp.get("/dashboard/")
@auth_check
def dashboard():
    # The rendered dashboard lives elsewhere; this reports who got through the gate.
    user = getattr(g, "user", None)
    return jsonify(
        login_enabled=current_app.extensions["auth_gate"].settings.enabled,
        user={"provider": user.provider, "id": user.user_id} if user else None,
    ), 200
