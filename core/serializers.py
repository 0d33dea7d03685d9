import logging

from django.conf import settings
from django.contrib.auth import get_user_model
from rest_framework import serializers
from rest_framework.exceptions import AuthenticationFailed
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from core.models import AuditLog, Company, SystemBackup, WebAuthnCredential

User = get_user_model()
logger = logging.getLogger("security.auth")


def selected_company_code(user):
    if getattr(user, "default_company_id", None):
        return user.default_company.code
    return settings.DEFAULT_COMPANY_CODE


class CompanySerializer(serializers.ModelSerializer):
    class Meta:
        model = Company
        fields = [
            "id",
            "code",
            "name",
            "address",
            "phone",
            "email",
            "tax_registration",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_code(self, value):
        value = value.strip().upper()
        if self.instance is not None and value != self.instance.code:
            raise serializers.ValidationError("Company code cannot be changed.")
        return value


class UserSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True, required=False, min_length=8, style={"input_type": "password"})
    default_company_code = serializers.SlugRelatedField(
        source="default_company",
        slug_field="code",
        queryset=Company.objects.filter(is_active=True),
        required=False,
        allow_null=True,
    )

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "full_name",
            "role",
            "permissions",
            "default_company_code",
            "is_active",
            "password",
            "last_login",
            "date_joined",
        ]
        read_only_fields = ["id", "last_login", "date_joined"]

    def validate_email(self, value):
        normalized_email = value.strip().lower()
        queryset = User.objects.filter(email__iexact=normalized_email)
        if self.instance is not None:
            queryset = queryset.exclude(pk=self.instance.pk)
        if normalized_email and queryset.exists():
            raise serializers.ValidationError("A user with this email already exists.")
        return normalized_email

    def validate_permissions(self, value):
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise serializers.ValidationError("Permissions must be a list of strings.")
        return [item.strip().upper() for item in value if item.strip()]

    def validate(self, attrs):
        if self.instance is None and not attrs.get("password"):
            raise serializers.ValidationError({"password": "This field is required."})
        return attrs

    def create(self, validated_data):
        password = validated_data.pop("password")
        user = User(**validated_data)
        user.set_password(password)
        user.save()
        return user

    def update(self, instance, validated_data):
        password = validated_data.pop("password", None)
        for field, value in validated_data.items():
            setattr(instance, field, value)
        if password:
            instance.set_password(password)
        instance.save()
        return instance


class LoginSerializer(TokenObtainPairSerializer):
    """Username-or-email login. Passwords are checked by Django's hashers via `authenticate`."""

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["username"] = user.get_username()
        token["role"] = getattr(user, "role", None)
        token["permissions"] = list(getattr(user, "permissions", None) or [])
        token["selected_company"] = selected_company_code(user)
        return token

    def validate(self, attrs):
        login = attrs.get(self.username_field, "").strip()
        if login and "@" in login:
            user = User.objects.filter(email__iexact=login).first()
            if user is not None:
                login = user.get_username()
        attrs[self.username_field] = login

        try:
            data = super().validate(attrs)
        except AuthenticationFailed:
            logger.warning("login_failed username=%s", login, extra={"event": "login_failed"})
            raise

        logger.info("login_succeeded username=%s", self.user.username, extra={"user_id": str(self.user.pk), "event": "login_succeeded"})
        data["user"] = UserSerializer(self.user).data
        return data


def issue_tokens(user):
    refresh = LoginSerializer.get_token(user)
    return {"refresh": str(refresh), "access": str(refresh.access_token), "user": UserSerializer(user).data}


class VerifyTokenSerializer(serializers.Serializer):
    token = serializers.CharField()


class WebAuthnLoginStartSerializer(serializers.Serializer):
    username = serializers.CharField()


class WebAuthnFinishSerializer(serializers.Serializer):
    credential = serializers.DictField()
    name = serializers.CharField(max_length=128, required=False, allow_blank=True, default="")


class WebAuthnLoginFinishSerializer(WebAuthnFinishSerializer):
    username = serializers.CharField()


class WebAuthnCredentialSerializer(serializers.ModelSerializer):
    class Meta:
        model = WebAuthnCredential
        fields = ["id", "credential_id", "name", "transports", "sign_count", "created_at", "last_used_at"]
        read_only_fields = fields


class AuditLogSerializer(serializers.ModelSerializer):
    actor_username = serializers.CharField(source="actor.username", read_only=True)
    company_code = serializers.CharField(source="company.code", read_only=True)

    class Meta:
        model = AuditLog
        fields = [
            "id",
            "actor",
            "actor_username",
            "company",
            "company_code",
            "action",
            "entity",
            "entity_id",
            "before_snapshot",
            "after_snapshot",
            "request_id",
            "created_at",
        ]
        read_only_fields = fields


class SystemBackupSerializer(serializers.ModelSerializer):
    company_code = serializers.CharField(source="company.code", read_only=True)
    created_by_username = serializers.CharField(source="created_by.username", read_only=True, default=None)

    class Meta:
        model = SystemBackup
        fields = [
            "id",
            "company_code",
            "backup_type",
            "file_path",
            "file_size",
            "backup_date",
            "created_by",
            "created_by_username",
        ]
        read_only_fields = ["id", "company_code", "backup_date", "created_by", "created_by_username"]
