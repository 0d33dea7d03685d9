import csv
import io
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import AccessToken
from webauthn.helpers.exceptions import InvalidAuthenticationResponse, InvalidRegistrationResponse

from core.models import AuditLog, Company, SystemBackup, WebAuthnCredential
from sales.models import Customer


class AuthenticationTests(TestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        self.company = Company.objects.create(code="CMP01", name="Main Company")
        self.user = get_user_model().objects.create_user(
            username="cashier",
            email="Cashier@Example.com",
            password="pass1234",
            default_company=self.company,
        )

    def test_password_is_stored_hashed(self):
        self.assertNotEqual(self.user.password, "pass1234")
        self.assertTrue(self.user.check_password("pass1234"))

    def test_login_with_username_returns_tokens_and_user(self):
        response = self.client.post("/api/auth/login/", {"username": "cashier", "password": "pass1234"}, format="json")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertIn("access", body)
        self.assertIn("refresh", body)
        self.assertEqual(body["user"]["username"], "cashier")
        self.assertNotIn("password", body["user"])

        token = AccessToken(body["access"])
        self.assertEqual(token["username"], "cashier")
        self.assertEqual(token["role"], "USER")
        self.assertEqual(token["selected_company"], "CMP01")

    def test_login_with_email_is_case_insensitive(self):
        response = self.client.post(
            "/api/auth/login/", {"username": "CASHIER@example.com", "password": "pass1234"}, format="json"
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["user"]["email"], "cashier@example.com")

    def test_wrong_password_is_rejected(self):
        with self.assertLogs("security.auth", level="WARNING") as captured:
            response = self.client.post("/api/auth/login/", {"username": "cashier", "password": "nope"}, format="json")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "authentication_failed")
        self.assertIn("login_failed", captured.output[0])

    def test_inactive_user_cannot_login(self):
        self.user.is_active = False
        self.user.save()

        response = self.client.post("/api/auth/login/", {"username": "cashier", "password": "pass1234"}, format="json")

        self.assertEqual(response.status_code, 401)

    def test_verify_valid_token(self):
        access = self.client.post(
            "/api/auth/login/", {"username": "cashier", "password": "pass1234"}, format="json"
        ).json()["access"]

        response = self.client.post("/api/auth/verify/", {"token": access}, format="json")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["valid"])
        self.assertEqual(body["selected_company"], "CMP01")
        self.assertEqual(body["user"]["username"], "cashier")

    def test_verify_invalid_token(self):
        response = self.client.post("/api/auth/verify/", {"token": "not-a-token"}, format="json")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "authentication_failed")

    def test_refresh_issues_new_access_token(self):
        refresh = self.client.post(
            "/api/auth/login/", {"username": "cashier", "password": "pass1234"}, format="json"
        ).json()["refresh"]

        response = self.client.post("/api/auth/token/refresh/", {"refresh": refresh}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertIn("access", response.json())

    def test_selected_company_claim_scopes_requests(self):
        other = Company.objects.create(code="CMP02", name="Second Company")
        Customer.objects.create(company=other, code="C9", name="Second Company Customer")
        self.user.default_company = other
        self.user.save()
        access = self.client.post(
            "/api/auth/login/", {"username": "cashier", "password": "pass1234"}, format="json"
        ).json()["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")

        response = self.client.get("/api/customers/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["code"] for row in response.json()["results"]], ["C9"])

    def test_unauthenticated_request_uses_error_envelope(self):
        response = self.client.get("/api/customers/")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(sorted(response.json().keys()), ["code", "errors", "message", "status"])
        self.assertEqual(response.json()["code"], "not_authenticated")
        self.assertEqual(response.json()["status"], 401)


class WebAuthnTests(TestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        self.company = Company.objects.create(code="CMP01", name="Main Company")
        self.user = get_user_model().objects.create_user(
            username="biometric",
            password="pass1234",
            default_company=self.company,
        )

    def register(self):
        self.client.force_authenticate(user=self.user)
        return self.client.post("/api/auth/webauthn/register-start/", {}, format="json")

    @patch("core.views.verify_registration_response")
    def test_register_stores_credential_and_consumes_challenge(self, verify):
        verify.return_value = SimpleNamespace(credential_id=b"cred-1", credential_public_key=b"public-key", sign_count=0)
        start = self.register()
        self.assertEqual(start.status_code, 200)
        self.assertIn("challenge", start.json())

        payload = {"credential": {"id": "Y3JlZC0x", "response": {"transports": ["internal"]}}, "name": "Laptop"}
        finish = self.client.post("/api/auth/webauthn/register-finish/", payload, format="json")

        self.assertEqual(finish.status_code, 201)
        self.assertEqual(finish.json()["credential_id"], "Y3JlZC0x")
        stored = WebAuthnCredential.objects.get(user=self.user)
        self.assertEqual(stored.transports, ["internal"])
        self.assertEqual(stored.name, "Laptop")

        replay = self.client.post("/api/auth/webauthn/register-finish/", payload, format="json")
        self.assertEqual(replay.status_code, 400)
        self.assertIn("credential", replay.json()["errors"])

    def test_register_finish_without_start_is_rejected(self):
        self.client.force_authenticate(user=self.user)

        response = self.client.post("/api/auth/webauthn/register-finish/", {"credential": {"id": "x"}}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertFalse(WebAuthnCredential.objects.exists())

    @patch("core.views.verify_registration_response", side_effect=InvalidRegistrationResponse("bad attestation"))
    def test_invalid_registration_is_rejected(self, verify):
        self.register()

        response = self.client.post("/api/auth/webauthn/register-finish/", {"credential": {"id": "x"}}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertFalse(WebAuthnCredential.objects.exists())

    def test_login_start_requires_registered_credential(self):
        response = self.client.post("/api/auth/webauthn/login-start/", {"username": "biometric"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("username", response.json()["errors"])

    def test_login_start_for_unknown_user(self):
        response = self.client.post("/api/auth/webauthn/login-start/", {"username": "ghost"}, format="json")

        self.assertEqual(response.status_code, 404)

    @patch("core.views.verify_authentication_response")
    def test_login_issues_tokens_and_updates_sign_count(self, verify):
        verify.return_value = SimpleNamespace(new_sign_count=7)
        WebAuthnCredential.objects.create(user=self.user, credential_id="Y3JlZC0x", public_key="cHVibGljLWtleQ")

        start = self.client.post("/api/auth/webauthn/login-start/", {"username": "biometric"}, format="json")
        self.assertEqual(start.status_code, 200)
        self.assertEqual(start.json()["allowCredentials"][0]["id"], "Y3JlZC0x")

        response = self.client.post(
            "/api/auth/webauthn/login-finish/",
            {"username": "biometric", "credential": {"id": "Y3JlZC0x"}},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn("access", response.json())
        stored = WebAuthnCredential.objects.get(credential_id="Y3JlZC0x")
        self.assertEqual(stored.sign_count, 7)
        self.assertIsNotNone(stored.last_used_at)
        self.assertEqual(verify.call_args.kwargs["credential_public_key"], b"public-key")

    @patch("core.views.verify_authentication_response", side_effect=InvalidAuthenticationResponse("bad signature"))
    def test_failed_assertion_returns_unauthorized(self, verify):
        WebAuthnCredential.objects.create(user=self.user, credential_id="Y3JlZC0x", public_key="cHVibGljLWtleQ")
        self.client.post("/api/auth/webauthn/login-start/", {"username": "biometric"}, format="json")

        response = self.client.post(
            "/api/auth/webauthn/login-finish/",
            {"username": "biometric", "credential": {"id": "Y3JlZC0x"}},
            format="json",
        )

        self.assertEqual(response.status_code, 401)
        self.assertNotIn("access", response.json())

    def test_unknown_credential_returns_unauthorized(self):
        WebAuthnCredential.objects.create(user=self.user, credential_id="Y3JlZC0x", public_key="cHVibGljLWtleQ")
        self.client.post("/api/auth/webauthn/login-start/", {"username": "biometric"}, format="json")

        response = self.client.post(
            "/api/auth/webauthn/login-finish/",
            {"username": "biometric", "credential": {"id": "b3RoZXI"}},
            format="json",
        )

        self.assertEqual(response.status_code, 401)

    def test_credentials_are_listed_and_removed_per_user(self):
        WebAuthnCredential.objects.create(user=self.user, credential_id="Y3JlZC0x", public_key="cHVibGljLWtleQ")
        other = get_user_model().objects.create_user(username="other", password="pass1234")
        WebAuthnCredential.objects.create(user=other, credential_id="b3RoZXI", public_key="cHVibGljLWtleQ")
        self.client.force_authenticate(user=self.user)

        listed = self.client.get("/api/auth/webauthn/credentials/")
        self.assertEqual([row["credential_id"] for row in listed.json()], ["Y3JlZC0x"])

        self.assertEqual(self.client.delete("/api/auth/webauthn/credentials/b3RoZXI/").status_code, 404)
        self.assertEqual(self.client.delete("/api/auth/webauthn/credentials/Y3JlZC0x/").status_code, 204)
        self.assertFalse(WebAuthnCredential.objects.filter(user=self.user).exists())


class CompanyAndUserAdminTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.company = Company.objects.create(code="CMP01", name="Main Company")
        self.admin = get_user_model().objects.create_user(
            username="admin",
            password="pass1234",
            role="ADMIN",
            default_company=self.company,
        )
        self.user = get_user_model().objects.create_user(
            username="clerk",
            password="pass1234",
            default_company=self.company,
        )

    def test_admin_creates_company_with_normalized_code(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post("/api/companies/", {"code": "cmp02", "name": "Second Company"}, format="json")

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["code"], "CMP02")
        self.assertTrue(AuditLog.objects.filter(action="company.create", entity_id=response.json()["id"]).exists())

    def test_company_code_cannot_change(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.patch("/api/companies/CMP01/", {"code": "NEW"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("code", response.json()["errors"])

    def test_regular_user_can_view_but_not_manage_companies(self):
        self.client.force_authenticate(user=self.user)

        self.assertEqual(self.client.get("/api/companies/").status_code, 200)
        response = self.client.post("/api/companies/", {"code": "CMP03", "name": "Nope"}, format="json")
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")

    def test_company_with_dependents_cannot_be_deleted(self):
        Customer.objects.create(company=self.company, code="C001", name="Customer")
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete("/api/companies/CMP01/")

        self.assertEqual(response.status_code, 409)
        body = response.json()
        self.assertEqual(body["code"], "dependent_records_exist")
        self.assertEqual(body["errors"]["customers"], 1)
        self.assertEqual(body["errors"]["users"], 2)
        self.assertNotIn("products", body["errors"])
        self.assertTrue(Company.objects.filter(code="CMP01").exists())

    def test_empty_company_can_be_deleted(self):
        Company.objects.create(code="CMP09", name="Empty")
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete("/api/companies/CMP09/")

        self.assertEqual(response.status_code, 204)
        self.assertFalse(Company.objects.filter(code="CMP09").exists())
        self.assertTrue(AuditLog.objects.filter(action="company.delete").exists())

    def test_admin_creates_user_with_hashed_password(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            "/api/users/",
            {
                "username": "newbie",
                "email": "Newbie@Example.com",
                "password": "longpassword",
                "default_company_code": "CMP01",
                "permissions": ["sales_manage"],
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertNotIn("password", body)
        self.assertEqual(body["email"], "newbie@example.com")
        self.assertEqual(body["permissions"], ["SALES_MANAGE"])
        created = get_user_model().objects.get(username="newbie")
        self.assertNotEqual(created.password, "longpassword")
        self.assertTrue(created.check_password("longpassword"))

    def test_user_password_is_required_on_create(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post("/api/users/", {"username": "nopass"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("password", response.json()["errors"])

    def test_duplicate_email_is_rejected(self):
        get_user_model().objects.create_user(username="first", email="same@example.com", password="pass1234")
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            "/api/users/", {"username": "second", "email": "SAME@example.com", "password": "longpassword"}, format="json"
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("email", response.json()["errors"])

    def test_user_management_is_admin_only(self):
        self.client.force_authenticate(user=self.user)

        self.assertEqual(self.client.get("/api/users/").status_code, 403)
        me = self.client.get("/api/users/me/")
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["username"], "clerk")

    def test_admin_cannot_delete_self(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete(f"/api/users/{self.admin.id}/")

        self.assertEqual(response.status_code, 400)
        self.assertTrue(get_user_model().objects.filter(pk=self.admin.pk).exists())

    def test_password_change_rehashes(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.patch(f"/api/users/{self.user.id}/", {"password": "anotherpass"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("anotherpass"))


class AuditLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.company = Company.objects.create(code="CMP01", name="Main Company")
        self.other = Company.objects.create(code="CMP02", name="Second Company")
        self.admin = get_user_model().objects.create_user(
            username="auditor",
            password="pass1234",
            role="ADMIN",
            default_company=self.company,
        )
        self.user = get_user_model().objects.create_user(
            username="clerk",
            password="pass1234",
            default_company=self.company,
        )
        AuditLog.objects.create(actor=self.admin, company=self.company, action="customer.create", entity="customer", entity_id="1")
        AuditLog.objects.create(actor=self.admin, company=self.company, action="customer.update", entity="customer", entity_id="1")
        AuditLog.objects.create(actor=self.admin, company=self.other, action="customer.create", entity="customer", entity_id="2")

    def test_logs_are_scoped_to_request_company(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/admin/audit-logs/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 2)
        self.assertEqual({row["company_code"] for row in response.json()["results"]}, {"CMP01"})

    def test_action_filter(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/admin/audit-logs/", {"action": "customer.update"})

        self.assertEqual(response.json()["count"], 1)

    def test_logs_are_read_only(self):
        self.client.force_authenticate(user=self.admin)
        log = AuditLog.objects.filter(company=self.company).first()

        response = self.client.patch(f"/api/admin/audit-logs/{log.id}/", {"action": "changed"}, format="json")

        self.assertEqual(response.status_code, 405)

    def test_regular_user_cannot_read_logs(self):
        self.client.force_authenticate(user=self.user)

        with self.assertLogs("security.authorization", level="WARNING"):
            response = self.client.get("/api/admin/audit-logs/")

        self.assertEqual(response.status_code, 403)

    def test_export_csv(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/admin/audit-logs/export/", HTTP_X_COMPANY_CODE="CMP02")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        rows = list(csv.reader(io.StringIO(response.content.decode())))
        self.assertEqual(rows[0][0], "id")
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[1][3], "CMP02")

    def test_impossible_start_date_is_a_validation_error(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/admin/audit-logs/", {"start_date": "2024-02-30T00:00:00"})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("start_date", response.json()["errors"])


class SystemBackupTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.company = Company.objects.create(code="CMP01", name="Main Company")
        self.other = Company.objects.create(code="CMP02", name="Second Company")
        self.admin = get_user_model().objects.create_user(
            username="admin",
            password="pass1234",
            role="ADMIN",
            default_company=self.company,
        )
        self.user = get_user_model().objects.create_user(
            username="clerk",
            password="pass1234",
            default_company=self.company,
        )

    def test_admin_records_backup_for_request_company(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            "/api/system/backups/",
            {"backup_type": "FULL", "file_path": "/var/backups/cmp01-full.sql.gz", "file_size": 73400320},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["company_code"], "CMP01")
        self.assertEqual(body["created_by_username"], "admin")
        self.assertEqual(body["file_size"], 73400320)
        backup = SystemBackup.objects.get(pk=body["id"])
        self.assertEqual(backup.company, self.company)
        self.assertEqual(backup.created_by, self.admin)
        self.assertTrue(AuditLog.objects.filter(action="system_backup.create", entity_id=body["id"]).exists())

    def test_list_is_newest_first_and_scoped_to_company(self):
        older = SystemBackup.objects.create(company=self.company, file_path="/var/backups/one.sql", created_by=self.admin)
        SystemBackup.objects.filter(pk=older.pk).update(backup_date=timezone.now() - timedelta(days=1))
        latest = SystemBackup.objects.create(company=self.company, file_path="/var/backups/two.sql", created_by=self.admin)
        SystemBackup.objects.create(company=self.other, file_path="/var/backups/other.sql", created_by=self.admin)
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/system/backups/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 2)
        self.assertEqual(response.json()["results"][0]["id"], str(latest.id))
        self.assertEqual({row["company_code"] for row in response.json()["results"]}, {"CMP01"})

    def test_blank_file_path_is_rejected(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post("/api/system/backups/", {"backup_type": "MANUAL", "file_path": "  "}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("file_path", response.json()["errors"])

    def test_entries_cannot_be_edited(self):
        backup = SystemBackup.objects.create(company=self.company, file_path="/var/backups/one.sql")
        self.client.force_authenticate(user=self.admin)

        response = self.client.patch(f"/api/system/backups/{backup.id}/", {"file_size": 1}, format="json")

        self.assertEqual(response.status_code, 405)

    def test_regular_user_cannot_manage_backups(self):
        self.client.force_authenticate(user=self.user)

        with self.assertLogs("security.authorization", level="WARNING"):
            listing = self.client.get("/api/system/backups/")
        with self.assertLogs("security.authorization", level="WARNING"):
            created = self.client.post("/api/system/backups/", {"file_path": "/tmp/x.sql"}, format="json")

        self.assertEqual(listing.status_code, 403)
        self.assertEqual(created.status_code, 403)
        self.assertFalse(SystemBackup.objects.exists())

    def test_company_with_backups_cannot_be_deleted(self):
        SystemBackup.objects.create(company=self.other, file_path="/var/backups/other.sql")
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete("/api/companies/CMP02/")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["errors"]["backups"], 1)


class HealthTests(TestCase):
    def test_healthz_echoes_request_id(self):
        response = self.client.get("/api/healthz/", HTTP_X_REQUEST_ID="req-123")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok", "request_id": "req-123"})
        self.assertEqual(response["X-Request-ID"], "req-123")

    def test_readyz(self):
        response = self.client.get("/api/readyz/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ready")
