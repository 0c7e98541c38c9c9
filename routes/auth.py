from flask import Blueprint, current_app, g, jsonify, redirect, request, session

from security.auth_gate import SOCKET_TOKEN_COOKIE, auth_check
from security.tokens import TokenNotFoundError
from utils.auth_context import is_authenticated
from utils.log import get_logger

logger = get_logger(__name__)

auth_bp = Blueprint("auth", __name__)


def _gate():
    return current_app.extensions["auth_gate"]


def _current_token():
    presented = request.args.get("key") or request.cookies.get(SOCKET_TOKEN_COOKIE)
    if presented:
        return presented

    user = g.user if is_authenticated() else None
    if user is None:
        return None
    return _gate().tokens.find(provider=user.provider, user_id=user.user_id)


@auth_bp.get("/login")
def login():
    """Login entry point; the identity-provider integration hangs its flows off this."""
    settings = _gate().settings
    return jsonify(
        login_enabled=settings.enabled,
        providers=sorted(name for name, enabled in settings.providers.items() if enabled),
        return_to=session.get("returnTo"),
    ), 200


@auth_bp.route("/logout", methods=["GET", "POST"])
def logout():
    gate = _gate()
    user = g.user if is_authenticated() else None
    gate.destroy_session()
    if user is not None:
        logger.info("logout", provider=user.provider, user_id=user.user_id)

    return gate.clear_token_cookie(redirect(gate.settings.login_path))


@auth_bp.post("/login/token/regenerate")
@auth_check
def regenerate_token():
    gate = _gate()
    token = _current_token()
    if not token:
        return jsonify(error="No socket token to regenerate"), 400

    try:
        new_token = gate.tokens.regenerate(token)
    except TokenNotFoundError:
        return jsonify(error="Token not found"), 404

    gate.set_token_cookie(new_token)
    return jsonify(token=new_token), 200
