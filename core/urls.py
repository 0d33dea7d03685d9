from django.urls import path
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenRefreshView

from core.views import (
    AuditLogViewSet,
    CompanyViewSet,
    LoginView,
    SystemBackupViewSet,
    UserViewSet,
    VerifyTokenView,
    WebAuthnCredentialViewSet,
    WebAuthnLoginFinishView,
    WebAuthnLoginStartView,
    WebAuthnRegisterFinishView,
    WebAuthnRegisterStartView,
    healthz,
    readyz,
)

router = DefaultRouter()
router.register(r"companies", CompanyViewSet, basename="company")
router.register(r"users", UserViewSet, basename="user")
router.register(r"admin/audit-logs", AuditLogViewSet, basename="audit-log")
router.register(r"system/backups", SystemBackupViewSet, basename="system-backup")
router.register(r"auth/webauthn/credentials", WebAuthnCredentialViewSet, basename="webauthn-credential")

urlpatterns = router.urls + [
    path("auth/login/", LoginView.as_view(), name="login"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("auth/verify/", VerifyTokenView.as_view(), name="token_verify"),
    path("auth/webauthn/register-start/", WebAuthnRegisterStartView.as_view(), name="webauthn_register_start"),
    path("auth/webauthn/register-finish/", WebAuthnRegisterFinishView.as_view(), name="webauthn_register_finish"),
    path("auth/webauthn/login-start/", WebAuthnLoginStartView.as_view(), name="webauthn_login_start"),
    path("auth/webauthn/login-finish/", WebAuthnLoginFinishView.as_view(), name="webauthn_login_finish"),
    path("healthz/", healthz, name="healthz"),
    path("readyz/", readyz, name="readyz"),
]
