"""Unit tests for MongoDB document models and the access-token claim set."""

from datetime import datetime, timezone

import pytest
from bson import ObjectId
from pydantic import ValidationError

from schemas.models.base import PyObjectId, to_object_id
from schemas.models.login_attempt import LoginAttemptDoc
from schemas.models.token import AccessTokenClaims
from schemas.models.user import UserDoc


# ── Helpers ───────────────────────────────────────────────────────────────────

def now():
    return datetime.now(timezone.utc)


# ── PyObjectId ────────────────────────────────────────────────────────────────

class TestPyObjectId:
    def test_accepts_objectid_instance(self):
        o = ObjectId()
        assert PyObjectId._validate(o) is o

    def test_accepts_hex_string(self):
        o = ObjectId()
        assert PyObjectId._validate(str(o)) == o

    def test_rejects_garbage(self):
        with pytest.raises(ValueError):
            PyObjectId._validate("not-an-id")

    def test_to_object_id_never_raises(self):
        assert to_object_id("nope") is None
        assert to_object_id(None) is None


# ── UserDoc ───────────────────────────────────────────────────────────────────

class TestUserDoc:
    def test_to_mongo_drops_missing_id(self):
        doc = UserDoc(email="a@b.test").to_mongo()
        assert "_id" not in doc
        assert doc["role"] is None
        assert doc["is_deleted"] is False

    def test_from_mongo_round_trip(self):
        oid = ObjectId()
        tenant = ObjectId()
        user = UserDoc.from_mongo(
            {
                "_id": oid,
                "email": "owner@clinic.test",
                "role": "clinic_owner",
                "tenant_id": tenant,
                "created_at": now(),
            }
        )
        assert user.id == oid
        assert user.user_id == str(oid)
        assert user.tenant_id == tenant
        assert user.to_mongo()["_id"] == oid

    def test_from_mongo_none(self):
        assert UserDoc.from_mongo(None) is None

    def test_pending_federated_user(self):
        user = UserDoc(email="a@b.test", google_id="g-1")
        assert user.is_pending
        assert user.is_federated
        assert not user.has_password

    def test_unknown_role_rejected(self):
        with pytest.raises(ValidationError):
            UserDoc(email="a@b.test", role="superuser")


# ── LoginAttemptDoc ───────────────────────────────────────────────────────────

class TestLoginAttemptDoc:
    def test_identifier_is_mongo_id(self):
        record = LoginAttemptDoc(identifier="ana@example.com", last_attempt=now())
        doc = record.to_mongo()
        assert doc["_id"] == "ana@example.com"
        assert "identifier" not in doc
        assert doc["version"] == 0

    def test_from_mongo(self):
        record = LoginAttemptDoc.from_mongo(
            {"_id": "10.0.0.1", "attempts": 3, "last_attempt": now(), "version": 3}
        )
        assert record.identifier == "10.0.0.1"
        assert record.attempts == 3

    def test_negative_attempts_rejected(self):
        with pytest.raises(ValidationError):
            LoginAttemptDoc(identifier="x", attempts=-1, last_attempt=now())


# ── AccessTokenClaims ─────────────────────────────────────────────────────────

class TestAccessTokenClaims:
    def _claims(self, **overrides):
        fields = dict(
            sub="507f1f77bcf86cd799439011",
            email="a@b.test",
            role="nurse",
            iss="histora",
            aud="histora.api",
            iat=1,
            exp=2,
        )
        fields.update(overrides)
        return AccessTokenClaims(**fields)

    def test_defaults(self):
        claims = self._claims()
        assert claims.ver == 1
        assert claims.user_id == "507f1f77bcf86cd799439011"
        assert not claims.is_pending

    def test_extra_claims_forbidden(self):
        with pytest.raises(ValidationError):
            self._claims(admin=True)

    def test_frozen(self):
        claims = self._claims()
        with pytest.raises(ValidationError):
            claims.role = "platform_admin"
