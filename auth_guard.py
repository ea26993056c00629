# auth_guard.py
from __future__ import annotations

from functools import wraps

from firebase_admin import auth as fb_auth
from flask import request, jsonify, g, current_app

from firebase_init import ensure_firebase_app

__all__ = ["require_user", "verify_bearer"]


def verify_bearer(token: str) -> dict:
    """Decoded Firebase ID token claims; raises firebase_admin.auth errors on failure."""
    ensure_firebase_app()
    return fb_auth.verify_id_token(token)


def require_user(f):
    """
    Usage:
      @require_user   -> any signed-in Firebase user; sets g.uid / g.claims
    """
    @wraps(f)
    def wrapped(*args, **kwargs):
        header = request.headers.get("Authorization", "")
        if not header.startswith("Bearer "):
            return jsonify(error="Missing token"), 401

        token = header.split(" ", 1)[1].strip()
        try:
            claims = verify_bearer(token)
        except fb_auth.ExpiredIdTokenError:
            return jsonify(error="Token has expired"), 401
        except (fb_auth.RevokedIdTokenError, fb_auth.InvalidIdTokenError, ValueError):
            return jsonify(error="Invalid token"), 401
        except Exception as e:
            current_app.logger.error(f"[auth_guard] Authentication error: {e}")
            return jsonify(error="Authentication processing error"), 500

        uid = claims.get("uid") or claims.get("user_id") or claims.get("sub")
        if not uid:
            return jsonify(error="Invalid token"), 401

        # Stash identity for downstream handlers
        g.uid = uid  # type: ignore[attr-defined]
        g.claims = claims  # type: ignore[attr-defined]

        try:
            current_app.logger.info(
                "[guard] %s %s uid=%s email=%s ip=%s",
                request.method,
                request.path,
                uid,
                claims.get("email") or "-",
                request.remote_addr,
            )
        except Exception:
            # Never fail a request because logging exploded
            pass

        return f(*args, **kwargs)

    return wrapped
