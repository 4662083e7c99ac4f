"""Customer and admin authentication.

The two domains share the authorization code (``Principal``,
``TokenSessions``) but keep separate session tables, so a token issued in
one domain never resolves in the other.
"""

import functools
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

import bcrypt
from flask import Blueprint, current_app, g, jsonify, request, session

import mailer
from db import get_db
from errors import (
    BadRequest,
    Conflict,
    ServerError,
    Unauthorized,
    clean_str,
    require_fields,
    valid_email,
)
from models import (
    Admin,
    AdminAccount,
    AdminSession,
    User,
    UserSession,
    Verification,
    utcnow,
)

logger = logging.getLogger(__name__)

CUSTOMER = "customer"
ADMIN = "admin"

EMAIL_VERIFICATION = "email-verification"
PASSWORD_RESET = "password-reset"
MIN_PASSWORD_LENGTH = 8


def hash_password(password):
    if not isinstance(password, str):
        raise BadRequest("Password must be a string", "INVALID_PASSWORD")
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds)).decode("utf-8")


def check_password(password, hashed):
    if not hashed or not isinstance(password, str):
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


@dataclass(frozen=True)
class Principal:
    subject_id: str
    role: str
    domain: str
    email: str
    name: str

    @property
    def is_admin(self):
        return self.role == "admin"

    def can_access(self, owner_id):
        return self.is_admin or owner_id == self.subject_id


class TokenSessions:
    """Issue, resolve and revoke bearer-style session tokens for one domain."""

    def __init__(self, domain, session_model, owner_model, owner_fk, lifetime_key):
        self.domain = domain
        self.session_model = session_model
        self.owner_model = owner_model
        self.owner_fk = owner_fk
        self.lifetime_key = lifetime_key

    def principal_for(self, owner):
        role = "admin" if self.domain == ADMIN else (owner.role or "user")
        return Principal(owner.id, role, self.domain, owner.email, owner.name)

    def issue(self, db, owner):
        days = current_app.config[self.lifetime_key]
        row = self.session_model(
            token=secrets.token_hex(32),
            expires_at=utcnow() + timedelta(days=days),
            ip_address=_client_ip(),
            user_agent=request.headers.get("User-Agent"),
        )
        setattr(row, self.owner_fk, owner.id)
        db.add(row)
        db.commit()
        return row

    def resolve(self, db, token):
        row = db.query(self.session_model).filter_by(token=token).first()
        if row is None:
            raise Unauthorized("Invalid session token")
        if row.expires_at < utcnow():
            db.delete(row)
            db.commit()
            raise Unauthorized("Session expired")
        owner = db.get(self.owner_model, getattr(row, self.owner_fk))
        if owner is None:
            raise Unauthorized(f"{self.domain.title()} not found")
        return self.principal_for(owner)

    def revoke(self, db, token):
        db.query(self.session_model).filter_by(token=token).delete()
        db.commit()

    def revoke_all(self, db, owner_id):
        db.query(self.session_model).filter(
            getattr(self.session_model, self.owner_fk) == owner_id
        ).delete()


customer_sessions = TokenSessions(CUSTOMER, UserSession, User, "user_id", "USER_SESSION_DAYS")
admin_sessions = TokenSessions(ADMIN, AdminSession, Admin, "admin_id", "ADMIN_SESSION_DAYS")


def _client_ip():
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or request.remote_addr


def bearer_token():
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header[7:].strip() or None


def login_required(view):
    """Resolve the customer from the session cookie into ``g.principal``."""

    @functools.wraps(view)
    def wrapped(*args, **kwargs):
        token = session.get("token")
        if not token:
            raise Unauthorized("Authentication required")
        g.principal = customer_sessions.resolve(get_db(), token)
        return view(*args, **kwargs)

    return wrapped


def admin_required(view):
    """Resolve the admin from ``Authorization: Bearer`` into ``g.principal``."""

    @functools.wraps(view)
    def wrapped(*args, **kwargs):
        token = bearer_token()
        if not token:
            raise Unauthorized("Admin token required")
        g.principal = admin_sessions.resolve(get_db(), token)
        return view(*args, **kwargs)

    return wrapped


def current_customer():
    """The signed-in customer, or None when the request is anonymous."""
    token = session.get("token")
    if not token:
        return None
    try:
        return customer_sessions.resolve(get_db(), token)
    except Unauthorized:
        session.pop("token", None)
        return None


def _issue_verification(db, email, purpose, hours):
    db.query(Verification).filter_by(identifier=email, purpose=purpose).delete()
    row = Verification(
        identifier=email,
        value=secrets.token_urlsafe(32),
        purpose=purpose,
        expires_at=utcnow() + timedelta(hours=hours),
    )
    db.add(row)
    db.commit()
    return row


def _consume_verification(db, token, purpose):
    row = db.query(Verification).filter_by(value=token, purpose=purpose).first()
    if row is None:
        raise BadRequest("Invalid or already used token", "INVALID_TOKEN")
    if row.expires_at < utcnow():
        db.delete(row)
        db.commit()
        raise BadRequest("Token has expired", "TOKEN_EXPIRED")
    db.delete(row)
    return row


def check_new_password(password):
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise BadRequest(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters", "INVALID_PASSWORD"
        )


# --- Customer auth ---

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.route("/signup", methods=["POST"])
def signup():
    data = request.get_json(silent=True) or {}
    require_fields(data, "name", "email", "password")
    email = clean_str(data["email"]).lower()
    name = clean_str(data["name"])
    if not valid_email(email):
        raise BadRequest("Invalid email format", "INVALID_EMAIL")
    check_new_password(data["password"])

    db = get_db()
    if db.query(User).filter_by(email=email).first():
        raise Conflict("An account with this email already exists", "EMAIL_EXISTS")

    user = User(email=email, name=name, password_hash=hash_password(data["password"]))
    db.add(user)
    db.commit()
    row = customer_sessions.issue(db, user)
    session["token"] = row.token

    try:
        token = _issue_verification(db, email, EMAIL_VERIFICATION, 24)
        mailer.send_verification_email(email, name, token.value)
    except Exception:
        logger.exception("Failed to send verification email to %s", email)

    return jsonify({"user": user.to_dict()}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    require_fields(data, "email", "password")
    email = clean_str(data["email"]).lower()

    db = get_db()
    user = db.query(User).filter_by(email=email).first()
    if user is None or not check_password(data["password"], user.password_hash):
        raise Unauthorized("Invalid email or password", "INVALID_CREDENTIALS")

    row = customer_sessions.issue(db, user)
    session["token"] = row.token
    return jsonify({"user": user.to_dict(), "expiresAt": row.expires_at.isoformat()})


@auth_bp.route("/logout", methods=["POST"])
def logout():
    token = session.pop("token", None)
    if token:
        customer_sessions.revoke(get_db(), token)
    return jsonify({"success": True})


@auth_bp.route("/session", methods=["GET"])
@login_required
def current_session():
    user = get_db().get(User, g.principal.subject_id)
    return jsonify({"user": user.to_dict()})


@auth_bp.route("/send-verification", methods=["POST"])
@auth_bp.route("/resend-verification", methods=["POST"])
@login_required
def send_verification():
    db = get_db()
    user = db.get(User, g.principal.subject_id)
    if user.email_verified:
        raise BadRequest("Email is already verified", "ALREADY_VERIFIED")
    token = _issue_verification(db, user.email, EMAIL_VERIFICATION, 24)
    try:
        mailer.send_verification_email(user.email, user.name, token.value)
    except Exception as e:
        logger.exception("Failed to send verification email to %s", user.email)
        raise ServerError(f"Failed to send verification email: {e}", "EMAIL_SEND_FAILED")
    return jsonify({"success": True, "message": "Verification email sent"})


@auth_bp.route("/verify-email", methods=["GET", "POST"])
def verify_email():
    data = request.get_json(silent=True) or {}
    token = request.args.get("token") or data.get("token")
    if not token:
        raise BadRequest("Verification token is required", "MISSING_REQUIRED_FIELDS")

    db = get_db()
    row = _consume_verification(db, token, EMAIL_VERIFICATION)
    user = db.query(User).filter_by(email=row.identifier).first()
    if user is None:
        db.commit()
        raise BadRequest("No account for this token", "USER_NOT_FOUND")
    user.email_verified = True
    db.commit()
    return jsonify({"success": True, "message": "Email verified successfully"})


@auth_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    data = request.get_json(silent=True) or {}
    require_fields(data, "email")
    email = clean_str(data["email"]).lower()

    db = get_db()
    user = db.query(User).filter_by(email=email).first()
    if user is not None:
        try:
            token = _issue_verification(db, email, PASSWORD_RESET, 1)
            mailer.send_password_reset_email(email, user.name, token.value)
        except Exception:
            logger.exception("Failed to send password reset email to %s", email)

    # same answer either way, so emails cannot be probed
    return jsonify(
        {"success": True, "message": "If an account exists, a reset link has been sent"}
    )


@auth_bp.route("/reset-password", methods=["POST"])
def reset_password():
    data = request.get_json(silent=True) or {}
    require_fields(data, "token", "password")
    check_new_password(data["password"])

    db = get_db()
    row = _consume_verification(db, data["token"], PASSWORD_RESET)
    user = db.query(User).filter_by(email=row.identifier).first()
    if user is None:
        db.commit()
        raise BadRequest("No account for this token", "USER_NOT_FOUND")
    user.password_hash = hash_password(data["password"])
    customer_sessions.revoke_all(db, user.id)
    db.commit()
    return jsonify({"success": True, "message": "Password has been reset"})


# --- Admin auth ---

admin_auth_bp = Blueprint("admin_auth", __name__, url_prefix="/api/admin")


@admin_auth_bp.route("/auth/login", methods=["POST"])
def admin_login():
    data = request.get_json(silent=True) or {}
    require_fields(data, "email", "password")
    email = clean_str(data["email"]).lower()

    db = get_db()
    account = db.query(AdminAccount).filter_by(account_id=email).first()
    if account is None or not check_password(data["password"], account.password_hash):
        raise Unauthorized("Invalid email or password", "INVALID_CREDENTIALS")
    admin = db.get(Admin, account.admin_id)
    if admin is None:
        raise Unauthorized("Invalid email or password", "INVALID_CREDENTIALS")

    row = admin_sessions.issue(db, admin)
    logger.info("Admin %s signed in", admin.email)
    return jsonify(
        {
            "success": True,
            "token": row.token,
            "expiresAt": row.expires_at.isoformat(),
            "admin": admin.to_dict(),
        }
    )


@admin_auth_bp.route("/auth/logout", methods=["POST"])
@admin_required
def admin_logout():
    admin_sessions.revoke(get_db(), bearer_token())
    return jsonify({"success": True})


@admin_auth_bp.route("/auth/verify", methods=["GET"])
@admin_required
def admin_verify():
    admin = get_db().get(Admin, g.principal.subject_id)
    return jsonify({"valid": True, "admin": admin.to_dict()})


@admin_auth_bp.route("/auth/create", methods=["POST"])
def admin_create():
    db = get_db()
    # Open only for the very first admin; afterwards an admin must be signed in
    if db.query(Admin).count() > 0:
        token = bearer_token()
        if not token:
            raise Unauthorized("Admin token required")
        admin_sessions.resolve(db, token)

    data = request.get_json(silent=True) or {}
    require_fields(data, "email", "password", "name")
    email = clean_str(data["email"]).lower()
    if not valid_email(email):
        raise BadRequest("Invalid email format", "INVALID_EMAIL")
    check_new_password(data["password"])
    if db.query(Admin).filter_by(email=email).first():
        raise Conflict("Admin with this email already exists", "EMAIL_EXISTS")

    admin = Admin(email=email, name=clean_str(data["name"]), image=data.get("image"))
    db.add(admin)
    db.flush()
    db.add(
        AdminAccount(
            account_id=email,
            admin_id=admin.id,
            password_hash=hash_password(data["password"]),
        )
    )
    db.commit()
    logger.info("Admin account created for %s", email)
    return jsonify({"success": True, "admin": admin.to_dict()}), 201


@admin_auth_bp.route("/set-password", methods=["POST"])
@admin_required
def admin_set_password():
    data = request.get_json(silent=True) or {}
    require_fields(data, "currentPassword", "newPassword")
    check_new_password(data["newPassword"])

    db = get_db()
    account = db.query(AdminAccount).filter_by(admin_id=g.principal.subject_id).first()
    if account is None or not check_password(data["currentPassword"], account.password_hash):
        raise Unauthorized("Current password is incorrect", "INVALID_CREDENTIALS")
    account.password_hash = hash_password(data["newPassword"])
    db.commit()
    return jsonify({"success": True})
