import csv
import json
import logging

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.db import connections
from django.db.models import ProtectedError
from django.http import HttpResponse
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.exceptions import AuthenticationFailed, NotFound, ValidationError
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import AccessToken
from rest_framework_simplejwt.views import TokenObtainPairView
from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.exceptions import InvalidAuthenticationResponse, InvalidRegistrationResponse
from webauthn.helpers.structs import PublicKeyCredentialDescriptor, UserVerificationRequirement

from common.audit import create_audit_log_from_request
from common.company import CompanyScopedMutationMixin, get_request_company
from common.exceptions import DependentRecordsExist
from common.permissions import RoleCapabilityPermission, crud_action_map
from core.models import AuditLog, Company, SystemBackup, WebAuthnCredential
from core.serializers import (
    AuditLogSerializer,
    CompanySerializer,
    LoginSerializer,
    SystemBackupSerializer,
    UserSerializer,
    VerifyTokenSerializer,
    WebAuthnCredentialSerializer,
    WebAuthnFinishSerializer,
    WebAuthnLoginFinishSerializer,
    WebAuthnLoginStartSerializer,
    issue_tokens,
)

User = get_user_model()
logger = logging.getLogger(__name__)
auth_logger = logging.getLogger("security.auth")


class LoginView(TokenObtainPairView):
    serializer_class = LoginSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"


class BearerChallengeMixin:
    """Anonymous endpoints still answer failed credentials with 401 rather than 403."""

    def get_authenticate_header(self, request):
        return 'Bearer realm="api"'


class VerifyTokenView(BearerChallengeMixin, APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        serializer = VerifyTokenSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            token = AccessToken(serializer.validated_data["token"])
        except TokenError:
            auth_logger.warning("token_verify_failed", extra={"event": "token_verify_failed"})
            raise AuthenticationFailed("Invalid token.")

        user = User.objects.filter(pk=token.get(settings.SIMPLE_JWT.get("USER_ID_CLAIM", "user_id")), is_active=True).first()
        if user is None:
            auth_logger.warning("token_verify_unknown_user", extra={"event": "token_verify_failed"})
            raise AuthenticationFailed("Invalid token.")

        return Response(
            {
                "valid": True,
                "selected_company": token.get("selected_company"),
                "user": UserSerializer(user).data,
            }
        )


def _challenge_key(ceremony, user):
    return f"webauthn:{ceremony}:{user.pk}"


def _store_challenge(ceremony, user, challenge):
    cache.set(_challenge_key(ceremony, user), challenge, settings.WEBAUTHN_CHALLENGE_TIMEOUT)


def _consume_challenge(ceremony, user):
    key = _challenge_key(ceremony, user)
    challenge = cache.get(key)
    cache.delete(key)
    if challenge is None:
        auth_logger.warning(
            "webauthn_no_challenge ceremony=%s user=%s",
            ceremony,
            user.username,
            extra={"user_id": str(user.pk), "event": f"webauthn_{ceremony}_no_challenge"},
        )
        raise ValidationError({"credential": "No WebAuthn ceremony in progress or it has expired."})
    return challenge


def _active_user(username):
    user = User.objects.filter(username__iexact=username.strip(), is_active=True).first()
    if user is None:
        auth_logger.warning("webauthn_user_not_found username=%s", username, extra={"event": "webauthn_user_not_found"})
        raise NotFound("User was not found.")
    return user


def _descriptors(user):
    return [
        PublicKeyCredentialDescriptor(id=base64url_to_bytes(credential.credential_id))
        for credential in user.webauthn_credentials.all()
    ]


class WebAuthnRegisterStartView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        user = request.user
        options = generate_registration_options(
            rp_id=settings.WEBAUTHN_RP_ID,
            rp_name=settings.WEBAUTHN_RP_NAME,
            user_id=str(user.pk).encode(),
            user_name=user.username,
            user_display_name=user.full_name or user.username,
            exclude_credentials=_descriptors(user),
        )
        _store_challenge("register", user, options.challenge)
        auth_logger.info("webauthn_register_start", extra={"user_id": str(user.pk), "event": "webauthn_register_start"})
        return Response(json.loads(options_to_json(options)))


class WebAuthnRegisterFinishView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = WebAuthnFinishSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = request.user
        challenge = _consume_challenge("register", user)

        credential = serializer.validated_data["credential"]
        try:
            verification = verify_registration_response(
                credential=credential,
                expected_challenge=challenge,
                expected_origin=settings.WEBAUTHN_ORIGIN,
                expected_rp_id=settings.WEBAUTHN_RP_ID,
            )
        except InvalidRegistrationResponse as exc:
            auth_logger.warning(
                "webauthn_register_failed reason=%s", exc, extra={"user_id": str(user.pk), "event": "webauthn_register_failed"}
            )
            raise ValidationError({"credential": "Registration verification failed."})

        stored = WebAuthnCredential.objects.create(
            user=user,
            credential_id=bytes_to_base64url(verification.credential_id),
            public_key=bytes_to_base64url(verification.credential_public_key),
            sign_count=verification.sign_count,
            transports=credential.get("response", {}).get("transports") or [],
            name=serializer.validated_data["name"],
        )
        auth_logger.info("webauthn_register_finish", extra={"user_id": str(user.pk), "event": "webauthn_register_finish"})
        return Response(WebAuthnCredentialSerializer(stored).data, status=status.HTTP_201_CREATED)


class WebAuthnLoginStartView(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"

    def post(self, request):
        serializer = WebAuthnLoginStartSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = _active_user(serializer.validated_data["username"])

        allow_credentials = _descriptors(user)
        if not allow_credentials:
            raise ValidationError({"username": "No biometric credentials registered."})

        options = generate_authentication_options(
            rp_id=settings.WEBAUTHN_RP_ID,
            allow_credentials=allow_credentials,
            user_verification=UserVerificationRequirement.PREFERRED,
        )
        _store_challenge("login", user, options.challenge)
        auth_logger.info("webauthn_login_start", extra={"user_id": str(user.pk), "event": "webauthn_login_start"})
        return Response(json.loads(options_to_json(options)))


class WebAuthnLoginFinishView(BearerChallengeMixin, APIView):
    permission_classes = [AllowAny]
    authentication_classes = []
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"

    def post(self, request):
        serializer = WebAuthnLoginFinishSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = _active_user(serializer.validated_data["username"])
        challenge = _consume_challenge("login", user)

        credential = serializer.validated_data["credential"]
        stored = user.webauthn_credentials.filter(credential_id=credential.get("id", "")).first()
        if stored is None:
            auth_logger.warning("webauthn_unknown_credential", extra={"user_id": str(user.pk), "event": "webauthn_login_failed"})
            raise AuthenticationFailed("Credential not found.")

        try:
            verification = verify_authentication_response(
                credential=credential,
                expected_challenge=challenge,
                expected_origin=settings.WEBAUTHN_ORIGIN,
                expected_rp_id=settings.WEBAUTHN_RP_ID,
                credential_public_key=base64url_to_bytes(stored.public_key),
                credential_current_sign_count=stored.sign_count,
            )
        except InvalidAuthenticationResponse as exc:
            auth_logger.warning(
                "webauthn_login_failed reason=%s", exc, extra={"user_id": str(user.pk), "event": "webauthn_login_failed"}
            )
            raise AuthenticationFailed("Authentication verification failed.")

        stored.sign_count = verification.new_sign_count
        stored.last_used_at = timezone.now()
        stored.save(update_fields=["sign_count", "last_used_at"])
        auth_logger.info("webauthn_login_succeeded", extra={"user_id": str(user.pk), "event": "webauthn_login_succeeded"})
        return Response(issue_tokens(user))


class WebAuthnCredentialViewSet(mixins.ListModelMixin, mixins.DestroyModelMixin, viewsets.GenericViewSet):
    serializer_class = WebAuthnCredentialSerializer
    permission_classes = [IsAuthenticated]
    lookup_field = "credential_id"
    lookup_value_regex = "[^/]+"
    pagination_class = None

    def get_queryset(self):
        return WebAuthnCredential.objects.filter(user=self.request.user).order_by("-created_at")


class CompanyViewSet(viewsets.ModelViewSet):
    queryset = Company.objects.all()
    serializer_class = CompanySerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = crud_action_map("company.view", "company.manage")
    lookup_field = "code"

    def _dependent_counts(self, company):
        from finance.models import CashBalanceEntry, Expense
        from inventory.models import Product, Supplier
        from sales.models import Customer, SalesInvoice

        counts = {
            "products": Product.objects.filter(company=company).count(),
            "customers": Customer.objects.filter(company=company).count(),
            "suppliers": Supplier.objects.filter(company=company).count(),
            "sales_invoices": SalesInvoice.objects.filter(company=company).count(),
            "expenses": Expense.objects.filter(company=company).count(),
            "cash_transactions": CashBalanceEntry.objects.filter(company=company).count(),
            "users": company.users.count(),
            "backups": company.backups.count(),
        }
        return {name: count for name, count in counts.items() if count}

    def perform_create(self, serializer):
        instance = serializer.save()
        create_audit_log_from_request(
            self.request,
            action="company.create",
            entity="company",
            entity_id=instance.id,
            after_snapshot=self.get_serializer(instance).data,
            company=instance,
        )

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        create_audit_log_from_request(
            self.request,
            action="company.update",
            entity="company",
            entity_id=instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(instance).data,
            company=instance,
        )

    def perform_destroy(self, instance):
        dependents = self._dependent_counts(instance)
        if dependents:
            raise DependentRecordsExist(
                f"Company {instance.code} still has dependent records.",
                errors=dependents,
            )

        snapshot = self.get_serializer(instance).data
        company_id = instance.id
        try:
            instance.delete()
        except ProtectedError as exc:
            raise DependentRecordsExist(
                f"Company {instance.code} still has dependent records.",
                errors={"references": len(exc.protected_objects)},
            )
        create_audit_log_from_request(
            self.request,
            action="company.delete",
            entity="company",
            entity_id=company_id,
            before_snapshot=snapshot,
        )


class UserViewSet(viewsets.ModelViewSet):
    queryset = User.objects.select_related("default_company").order_by("username")
    serializer_class = UserSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = crud_action_map("user.manage", "user.manage", {"me": None})

    @action(detail=False, methods=["get"])
    def me(self, request):
        return Response(self.get_serializer(request.user).data)

    def perform_create(self, serializer):
        instance = serializer.save()
        create_audit_log_from_request(
            self.request,
            action="user.create",
            entity="user",
            entity_id=instance.id,
            after_snapshot=self.get_serializer(instance).data,
        )

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        create_audit_log_from_request(
            self.request,
            action="user.update",
            entity="user",
            entity_id=instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(instance).data,
        )

    def perform_destroy(self, instance):
        if instance.pk == self.request.user.pk:
            raise ValidationError({"detail": "You cannot delete your own account."})
        snapshot = self.get_serializer(instance).data
        user_id = instance.id
        instance.delete()
        create_audit_log_from_request(
            self.request,
            action="user.delete",
            entity="user",
            entity_id=user_id,
            before_snapshot=snapshot,
        )


class AuditLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = AuditLog.objects.select_related("actor", "company")
    serializer_class = AuditLogSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "audit.view", "retrieve": "audit.view", "export": "audit.view"}

    def _query_datetime(self, key, value):
        try:
            return parse_datetime(value)
        except ValueError:
            raise ValidationError({key: "Enter a valid date and time."})

    def get_queryset(self):
        qs = self.queryset.filter(company=get_request_company(self.request)).order_by("-created_at")

        start_date = self.request.query_params.get("start_date")
        end_date = self.request.query_params.get("end_date")
        actor_id = self.request.query_params.get("actor_id")
        action_name = self.request.query_params.get("action")
        entity = self.request.query_params.get("entity")

        if start_date:
            dt = self._query_datetime("start_date", start_date)
            if dt:
                qs = qs.filter(created_at__gte=dt)
        if end_date:
            dt = self._query_datetime("end_date", end_date)
            if dt:
                qs = qs.filter(created_at__lte=dt)
        if actor_id:
            qs = qs.filter(actor_id=actor_id)
        if action_name:
            qs = qs.filter(action=action_name)
        if entity:
            qs = qs.filter(entity=entity)

        return qs

    @action(detail=False, methods=["get"], url_path="export")
    def export(self, request):
        logs = self.get_queryset()
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = 'attachment; filename="audit-logs.csv"'

        writer = csv.writer(response)
        writer.writerow(["id", "created_at", "actor", "company", "action", "entity", "entity_id", "request_id"])
        for log in logs:
            writer.writerow(
                [
                    log.id,
                    log.created_at.isoformat(),
                    getattr(log.actor, "username", ""),
                    getattr(log.company, "code", ""),
                    log.action,
                    log.entity,
                    log.entity_id,
                    log.request_id,
                ]
            )
        return response


class SystemBackupViewSet(
    CompanyScopedMutationMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    viewsets.GenericViewSet,
):
    """Backup register. Entries are recorded after the fact and never edited."""

    queryset = SystemBackup.objects.select_related("company", "created_by")
    serializer_class = SystemBackupSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = crud_action_map("system.backup", "system.backup")
    audit_entity = "system_backup"


@api_view(["GET"])
@permission_classes([AllowAny])
def healthz(request):
    return Response({"status": "ok", "request_id": getattr(request, "request_id", None)})


@api_view(["GET"])
@permission_classes([AllowAny])
def readyz(request):
    try:
        with connections["default"].cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except Exception as exc:
        logger.exception("readiness_check_failed")
        return Response(
            {"status": "error", "request_id": getattr(request, "request_id", None), "detail": str(exc)},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return Response({"status": "ready", "request_id": getattr(request, "request_id", None)})
