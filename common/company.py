"""Company (tenant) context shared by every company-scoped endpoint."""

from django.conf import settings
from rest_framework import serializers, status
from rest_framework.exceptions import NotFound
from rest_framework.response import Response

from common.audit import create_audit_log_from_request
from core.models import Company

COMPANY_HEADER = "X-Company-Code"


def resolve_company_code(request):
    """Header first, then the token's selected company, then the user's default, then the configured fallback."""
    header_code = (request.headers.get(COMPANY_HEADER) or "").strip()
    if header_code:
        return header_code

    token = getattr(request, "auth", None)
    if token is not None and hasattr(token, "get"):
        selected = token.get("selected_company")
        if selected:
            return selected

    user = getattr(request, "user", None)
    if user is not None and user.is_authenticated and getattr(user, "default_company_id", None):
        return user.default_company.code

    return settings.DEFAULT_COMPANY_CODE


def get_request_company(request):
    company = getattr(request, "_erp_company", None)
    if company is not None:
        return company

    code = resolve_company_code(request)
    company = Company.objects.filter(code=code, is_active=True).first()
    if company is None:
        raise NotFound(f"Company {code} was not found.")

    request._erp_company = company
    request.company_code = company.code
    # the access log middleware sees the underlying Django request
    django_request = getattr(request, "_request", None)
    if django_request is not None:
        django_request.company_code = company.code
    return company


class CompanyCodeSerializerMixin:
    """Enforce `code` uniqueness inside the request's company."""

    code_label = "code"

    def validate_code(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Code is required.")

        company = self.context.get("company")
        queryset = self.Meta.model.objects.filter(company=company, code__iexact=value)
        if self.instance is not None:
            queryset = queryset.exclude(pk=self.instance.pk)
        if queryset.exists():
            raise serializers.ValidationError(f"A record with {self.code_label} {value} already exists.")
        return value


class CompanyScopedMutationMixin:
    """Scope querysets to the request company and audit every mutation."""

    audit_entity = None

    def get_company(self):
        return get_request_company(self.request)

    def get_queryset(self):
        return super().get_queryset().filter(company=self.get_company())

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context["company"] = self.get_company()
        return context

    def _audit(self, *, action, instance, before_snapshot=None, after_snapshot=None):
        create_audit_log_from_request(
            self.request,
            action=f"{self.audit_entity}.{action}",
            entity=self.audit_entity,
            entity_id=instance.pk,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
            company=self.get_company(),
        )

    def _stamp_fields(self, serializer, **fields):
        model = serializer.Meta.model
        names = {field.name for field in model._meta.get_fields()}
        return {key: value for key, value in fields.items() if key in names}

    def perform_create(self, serializer):
        user = self.request.user
        instance = serializer.save(**self._stamp_fields(serializer, company=self.get_company(), created_by=user, updated_by=user))
        self._audit(action="create", instance=instance, after_snapshot=self.get_serializer(instance).data)

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save(**self._stamp_fields(serializer, updated_by=self.request.user))
        self._audit(
            action="update",
            instance=instance,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(instance).data,
        )

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        pk = instance.pk
        instance.delete()
        instance.pk = pk
        self._audit(action="delete", instance=instance, before_snapshot=before_snapshot)


class LedgerDocumentMixin(CompanyScopedMutationMixin):
    """Route create/update of a ledger document through its service functions.

    Subclasses set `write_serializer_class`, `create_service` and
    `update_service`; the read serializer renders the result. Partial
    updates are not offered because an edit replaces the whole document.
    """

    write_serializer_class = None
    create_service = None
    update_service = None
    http_method_names = ["get", "post", "put", "head", "options"]

    def _validated_payload(self, request):
        serializer = self.write_serializer_class(data=request.data, context=self.get_serializer_context())
        serializer.is_valid(raise_exception=True)
        return dict(serializer.validated_data)

    def _reload(self, pk):
        # Query-string filters from get_queryset must not hide the document just written.
        return self.queryset.filter(company=self.get_company()).get(pk=pk)

    def create(self, request, *args, **kwargs):
        payload = self._validated_payload(request)
        instance = type(self).create_service(company=self.get_company(), user=request.user, **payload)
        data = self.get_serializer(self._reload(instance.pk)).data
        self._audit(action="create", instance=instance, after_snapshot=data)
        return Response(data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        instance = self.get_object()
        before_snapshot = self.get_serializer(instance).data
        payload = self._validated_payload(request)
        updated = type(self).update_service(instance.pk, company=self.get_company(), user=request.user, **payload)
        data = self.get_serializer(self._reload(updated.pk)).data
        self._audit(action="update", instance=updated, before_snapshot=before_snapshot, after_snapshot=data)
        return Response(data)
