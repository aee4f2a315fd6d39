import os
import time
import unittest
from unittest.mock import patch

import jwt
from fastapi import HTTPException

from docscan.core.auth import get_current_user

SECRET = "test-secret-with-enough-length-for-hs256"
AUTH_ENV = {"SUPABASE_JWT_SECRET": SECRET, "SUPABASE_URL": "", "SUPABASE_JWT_AUDIENCE": "authenticated"}


def _token(secret=SECRET, **claims):
    payload = {"sub": "user-1", "aud": "authenticated", "exp": int(time.time()) + 300}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


@patch.dict(os.environ, AUTH_ENV, clear=False)
class CurrentUserTests(unittest.TestCase):
    def test_missing_header(self):
        with self.assertRaises(HTTPException) as ctx:
            get_current_user(None)
        self.assertEqual(ctx.exception.status_code, 401)
        self.assertEqual(ctx.exception.detail, "Must be authenticated")

    def test_non_bearer_scheme(self):
        with self.assertRaises(HTTPException) as ctx:
            get_current_user(f"Basic {_token()}")
        self.assertEqual(ctx.exception.detail, "Must be authenticated")

    def test_valid_token(self):
        user = get_current_user(f"Bearer {_token(email='a@example.com')}")

        self.assertEqual(user.id, "user-1")
        self.assertEqual(user.email, "a@example.com")
        self.assertIsNone(user.org_id)

    def test_org_from_app_metadata_only(self):
        token = _token(app_metadata={"org_id": "org-9"}, user_metadata={"org_id": "org-evil"})

        self.assertEqual(get_current_user(f"Bearer {token}").org_id, "org-9")

        token = _token(user_metadata={"org_id": "org-evil"})
        self.assertIsNone(get_current_user(f"Bearer {token}").org_id)

    def test_wrong_secret_rejected(self):
        with self.assertRaises(HTTPException) as ctx:
            get_current_user(f"Bearer {_token(secret='another-secret-that-is-long-enough!!')}")
        self.assertEqual(ctx.exception.detail, "Invalid token")

    def test_expired_token_rejected(self):
        with self.assertRaises(HTTPException) as ctx:
            get_current_user(f"Bearer {_token(exp=int(time.time()) - 10)}")
        self.assertEqual(ctx.exception.status_code, 401)

    def test_wrong_audience_rejected(self):
        with self.assertRaises(HTTPException):
            get_current_user(f"Bearer {_token(aud='service')}")

    def test_garbage_token_rejected(self):
        with self.assertRaises(HTTPException) as ctx:
            get_current_user("Bearer not-a-jwt")
        self.assertEqual(ctx.exception.detail, "Invalid token")

    @patch.dict(os.environ, {"SUPABASE_JWT_SECRET": "", "SUPABASE_URL": ""}, clear=False)
    def test_unconfigured_auth_is_server_error(self):
        with self.assertRaises(HTTPException) as ctx:
            get_current_user(f"Bearer {_token()}")
        self.assertEqual(ctx.exception.status_code, 500)


if __name__ == "__main__":
    unittest.main()
