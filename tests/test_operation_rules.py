"""Tests for the operation registry and the validation pipeline."""

from pathlib import Path

import pytest

from safehost.core.errors import (
    PathTraversalError,
    RateLimitError,
    SchemaValidationError,
)
from safehost.core.types import FieldKind, OperationCategory
from safehost.guard.rules import (
    BUILTIN_OPERATIONS,
    FieldRule,
    OperationDescriptor,
    OperationRegistry,
    build_default_registry,
)
from safehost.guard.validation import OperationValidator


def _pg_params(**overrides):
    params = {
        "version": "15.2",
        "port": 5432,
        "username": "app_user",
        "database": "app_db",
        "password": "longenoughpass",
    }
    params.update(overrides)
    return params


class TestRegistry:
    registry = build_default_registry()

    def test_contains_operation_families(self):
        for name in (
            "system",
            "postgresql",
            "postgresql-manual-setup",
            "redis-automatic-setup",
            "docker-setup",
            "docker-network-setup",
            "pm2-start-process",
            "nginx-reverse-proxy",
            "nginx-letsencrypt",
            "security-scan",
            "project-creation",
            "client-deps-install",
            "deploy-production",
        ):
            assert name in self.registry

    def test_names_are_unique(self):
        names = [d.name for d in BUILTIN_OPERATIONS]
        assert len(names) == len(set(names)) == len(self.registry)

    def test_unknown_operation(self):
        with pytest.raises(SchemaValidationError, match="Unknown operation: drop-everything"):
            self.registry.validate_shape("drop-everything", {})

    def test_unknown_field_rejected(self):
        with pytest.raises(SchemaValidationError, match="shell"):
            self.registry.validate_shape("docker-download", {"shell": "rm -rf /"})

    def test_missing_required_field(self):
        params = _pg_params()
        del params["username"]
        with pytest.raises(SchemaValidationError) as exc_info:
            self.registry.validate_shape("postgresql-manual-setup", params)
        assert exc_info.value.field == "username"
        assert "Validation failed for postgresql-manual-setup: username" in exc_info.value.message

    def test_coerces_supplied_values_only(self):
        clean = self.registry.validate_shape("postgresql-manual-setup", _pg_params(port="5433"))
        assert clean["port"] == 5433
        assert "host" not in clean
        assert "backup" not in clean

    def test_version_pattern(self):
        with pytest.raises(SchemaValidationError, match="version"):
            self.registry.validate_shape("postgresql-manual-setup", _pg_params(version="latest"))

    def test_choices(self):
        with pytest.raises(SchemaValidationError, match="platform"):
            self.registry.validate_shape("nginx-download", {"platform": "solaris"})

    def test_list_fields(self):
        clean = self.registry.validate_shape(
            "nginx-load-balancer", {"domain": "example.com", "backendPorts": [5000, "5001"]}
        )
        assert clean["backendPorts"] == [5000, 5001]

    def test_duplicate_registration_rejected(self):
        registry = OperationRegistry()
        descriptor = OperationDescriptor("custom-op", OperationCategory.SYSTEM)
        registry.register(descriptor)
        with pytest.raises(ValueError):
            registry.register(descriptor)

    def test_descriptor_fields_override_common_fields(self):
        descriptor = OperationDescriptor(
            "custom-op",
            OperationCategory.SYSTEM,
            fields=(FieldRule("path", FieldKind.FREE_TEXT, required=True),),
        )
        assert descriptor.rule("path").kind is FieldKind.FREE_TEXT
        assert descriptor.rule("backup").kind is FieldKind.FLAG


class TestValidateOperation:
    def test_postgres_manual_setup_passes(self, ctx):
        params = _pg_params()
        OperationValidator(ctx).validate_operation("postgresql-manual-setup", params)
        assert params["username"] == "app_user"
        assert ctx.metrics.validations == 1

    def test_short_password_rejected(self, ctx):
        with pytest.raises(SchemaValidationError) as exc_info:
            OperationValidator(ctx).validate_operation(
                "postgresql-manual-setup", _pg_params(password="short")
            )
        assert "password" in exc_info.value.message
        assert "8" in exc_info.value.message
        assert ctx.metrics.validations == 0

    def test_password_with_quote_rejected(self, ctx):
        with pytest.raises(SchemaValidationError):
            OperationValidator(ctx).validate_operation(
                "postgresql-manual-setup", _pg_params(password="longenough'pass")
            )

    def test_target_path_resolved_in_place(self, ctx, tmp_path):
        params = {"targetPath": str(tmp_path / "sub" / ".." / "app.conf")}
        OperationValidator(ctx).validate_operation("docker-download", params)
        assert params["targetPath"] == str((tmp_path / "app.conf").resolve())

    def test_target_path_traversal_rejected(self, ctx):
        with pytest.raises(PathTraversalError):
            OperationValidator(ctx).validate_operation(
                "pm2-list-processes", {"targetPath": "../../etc/shadow"}
            )

    def test_platform_service_may_target_system_config(self, ctx):
        params = {"backup": True, "targetPath": "/etc/docker/daemon.json"}
        OperationValidator(ctx).validate_operation("docker-automatic-setup", params)
        assert params["targetPath"].endswith("daemon.json")

    def test_non_service_category_may_not_target_system_config(self, ctx):
        with pytest.raises(PathTraversalError):
            OperationValidator(ctx).validate_operation(
                "security-scan", {"targetPath": "/etc/docker/daemon.json"}
            )

    def test_path_kind_fields_are_checked(self, ctx):
        with pytest.raises(PathTraversalError):
            OperationValidator(ctx).validate_operation(
                "pm2-start-process", {"scriptPath": "/root/evil.js", "processName": "api"}
            )

    def test_free_text_is_scrubbed(self, ctx):
        params = {"context": "nightly\x07 scan"}
        OperationValidator(ctx).validate_operation("security-scan", params)
        assert params["context"] == "nightly scan"

    def test_rate_limit_applies_after_checks(self, ctx):
        validator = OperationValidator(ctx)
        for _ in range(10):
            validator.validate_operation("docker-setup", {})
        with pytest.raises(RateLimitError):
            validator.validate_operation("docker-setup", {})
        assert ctx.metrics.validations == 10

    def test_invalid_input_does_not_consume_rate_budget(self, ctx):
        validator = OperationValidator(ctx)
        with pytest.raises(SchemaValidationError):
            validator.validate_operation("docker-network-setup", {"networkName": "bad name"})
        assert ctx.rate_limiter.count("docker-network-setup") == 0

    def test_rate_window_rolls_over(self, ctx, clock):
        validator = OperationValidator(ctx)
        for _ in range(10):
            validator.validate_operation("docker-setup", {})
        with pytest.raises(RateLimitError):
            validator.validate_operation("docker-setup", {})
        clock.advance(61)
        validator.validate_operation("docker-setup", {})


def test_validated_paths_exist_under_allowed_bases(ctx):
    params = {"projectPath": "/srv/app/current/client"}
    OperationValidator(ctx).validate_operation("client-deps-install", params)
    assert Path(params["projectPath"]).name == "client"
