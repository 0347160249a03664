import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

import settings
from database import Store, serialize_doc, to_object_id, utcnow
from errors import (AuthError, Conflict, EmailNotVerified, Forbidden, InvalidCredentials, MissingField,
                    NotFound, ValidationError)
from schemas import Address, User
from security import create_token, decode_token, generate_token, hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
FORGOT_PASSWORD_MESSAGE = "If your email is registered, you will receive a password reset link."
PRIVATE_FIELDS = ("password_hash", "verification_token", "reset_password_token", "reset_password_expires")


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    user = serialize_doc(doc)
    for field in PRIVATE_FIELDS:
        user.pop(field, None)
    return user


def check_password_length(password: Optional[str], message: str = "Password must be at least 6 characters"):
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(message)


class AccountService:
    def __init__(self, store: Store, notifier=None):
        self.store = store
        self.notifier = notifier

    # ----------------------- Registration / Login -----------------------
    def register(self, name: str, email: str, password: str) -> Dict[str, Any]:
        if not name or not email or not password:
            raise MissingField("All fields are required")
        check_password_length(password)
        email = email.lower()
        if self.store["user"].find_one({"email": email}):
            raise Conflict("User already exists")

        token = generate_token()
        user = User(name=name, email=email, password_hash=hash_password(password), verification_token=token)
        try:
            user_id = self.store.create_document("user", user)
        except DuplicateKeyError:
            raise Conflict("User already exists")
        logger.info("Registered user %s", user_id)

        if self.notifier:
            self.notifier.send_verification(email, name, token)
        return {
            "message": "Registration successful! Please check your email to verify your account.",
            "user_id": user_id,
        }

    def verify_email(self, token: str) -> Dict[str, Any]:
        user = self.store["user"].find_one({"verification_token": token}) if token else None
        if not user:
            raise ValidationError("Invalid verification token")
        self.store["user"].update_one(
            {"_id": user["_id"]},
            {"$set": {"is_verified": True, "verification_token": None, "updated_at": utcnow()}},
        )
        return {"message": "Email verified successfully! You can now log in."}

    def login(self, email: str, password: str) -> Dict[str, Any]:
        if not email or not password:
            raise MissingField("Email and password are required")
        user = self.store["user"].find_one({"email": email.lower()})
        if not user or not verify_password(password, user.get("password_hash")):
            raise InvalidCredentials()
        if not user.get("is_verified"):
            raise EmailNotVerified()

        suser = public_user(user)
        token = create_token({"id": suser["id"], "email": suser["email"], "role": suser.get("role", "user")})
        return {
            "token": token,
            "user": {"id": suser["id"], "name": suser["name"], "email": suser["email"], "role": suser.get("role", "user")},
        }

    def authenticate(self, token: Optional[str]) -> Dict[str, Any]:
        if not token:
            raise AuthError()
        payload = decode_token(token)
        _id = to_object_id(payload.get("id"))
        user = self.store["user"].find_one({"_id": _id, "is_verified": True}) if _id else None
        if not user:
            raise Forbidden("User not found or not verified")
        return public_user(user)

    # ----------------------- Password reset -----------------------
    def forgot_password(self, email: str) -> Dict[str, Any]:
        if not email:
            raise MissingField("Email is required")
        user = self.store["user"].find_one({"email": email.lower(), "is_verified": True})
        if user:
            token = generate_token()
            expires = utcnow() + timedelta(minutes=settings.RESET_TOKEN_TTL_MINUTES)
            self.store["user"].update_one(
                {"_id": user["_id"]},
                {"$set": {"reset_password_token": token, "reset_password_expires": expires}},
            )
            if self.notifier:
                self.notifier.send_password_reset(user["email"], user.get("name", ""), token)
        return {"message": FORGOT_PASSWORD_MESSAGE}

    def reset_password(self, token: str, password: str) -> Dict[str, Any]:
        check_password_length(password)
        user = self.store["user"].find_one(
            {"reset_password_token": token, "reset_password_expires": {"$gt": utcnow()}}
        ) if token else None
        if not user:
            raise ValidationError("Invalid or expired reset token")
        self.store["user"].update_one(
            {"_id": user["_id"]},
            {"$set": {
                "password_hash": hash_password(password),
                "reset_password_token": None,
                "reset_password_expires": None,
                "updated_at": utcnow(),
            }},
        )
        return {"message": "Password reset successful! You can now log in with your new password."}

    # ----------------------- Profile -----------------------
    def get_profile(self, user: Dict[str, Any]) -> Dict[str, Any]:
        doc = self.store["user"].find_one({"_id": to_object_id(user["id"])})
        if not doc:
            raise NotFound("User not found")
        profile = public_user(doc)
        profile["addresses"] = self.list_addresses(user)
        return profile

    def update_profile(self, user: Dict[str, Any], name: str, phone: Optional[str] = None):
        if not name:
            raise MissingField("Name is required")
        self.store["user"].update_one(
            {"_id": to_object_id(user["id"])},
            {"$set": {"name": name, "phone": phone or None, "updated_at": utcnow()}},
        )

    def change_password(self, user: Dict[str, Any], current_password: str, new_password: str):
        if not current_password or not new_password:
            raise MissingField("Both current and new password are required")
        check_password_length(new_password, "New password must be at least 6 characters")
        doc = self.store["user"].find_one({"_id": to_object_id(user["id"])})
        if not doc:
            raise NotFound("User not found")
        if not verify_password(current_password, doc.get("password_hash")):
            raise ValidationError("Current password is incorrect")
        self.store["user"].update_one(
            {"_id": doc["_id"]}, {"$set": {"password_hash": hash_password(new_password), "updated_at": utcnow()}}
        )

    # ----------------------- Addresses -----------------------
    def list_addresses(self, user: Dict[str, Any]) -> List[Dict[str, Any]]:
        cursor = self.store["address"].find({"user_id": user["id"]}).sort([("is_default", -1), ("created_at", -1)])
        return [serialize_doc(a) for a in cursor]

    def _clear_default(self, user: Dict[str, Any], session=None):
        self.store["address"].update_many(
            {"user_id": user["id"], "is_default": True}, {"$set": {"is_default": False}}, session=session
        )

    def add_address(self, user: Dict[str, Any], fields: Dict[str, Any]) -> str:
        address = Address(user_id=user["id"], **fields)
        with self.store.transaction() as session:
            if address.is_default:
                self._clear_default(user, session)
            return self.store.create_document("address", address, session=session)

    def update_address(self, user: Dict[str, Any], address_id: str, fields: Dict[str, Any]):
        _id = to_object_id(address_id)
        if not _id or not self.store["address"].find_one({"_id": _id, "user_id": user["id"]}):
            raise NotFound("Address not found")
        address = Address(user_id=user["id"], **fields)
        with self.store.transaction() as session:
            if address.is_default:
                self._clear_default(user, session)
            self.store["address"].update_one(
                {"_id": _id, "user_id": user["id"]},
                {"$set": {**address.model_dump(), "updated_at": utcnow()}},
                session=session,
            )

    def delete_address(self, user: Dict[str, Any], address_id: str):
        _id = to_object_id(address_id)
        deleted = self.store["address"].delete_one({"_id": _id, "user_id": user["id"]}).deleted_count if _id else 0
        if deleted == 0:
            raise NotFound("Address not found")
