"""Tests for resource naming."""

import pytest

from effortless_deploy.exceptions import ValidationError
from effortless_deploy.naming import (
    DEFAULT_REGION,
    DEFAULT_STAGE,
    bucket_name,
    parameter_path,
    project_name,
    queue_name,
    resolve_region,
    resolve_stage,
    resource_name,
    validate_handler_name,
    validate_name,
)


class TestValidateName:
    """Test name validation."""

    @pytest.mark.parametrize("name", ["shop", "my-app", "A1", "orders-v2"])
    def test_valid_names(self, name: str) -> None:
        validate_name(name)

    def test_empty(self) -> None:
        with pytest.raises(ValidationError, match="cannot be empty"):
            validate_name("", "project")

    def test_underscore_has_hint(self) -> None:
        with pytest.raises(ValidationError, match="underscore") as exc_info:
            validate_name("send_mail", "handler name")
        assert exc_info.value.field == "handler name"
        assert exc_info.value.value == "send_mail"

    def test_space_has_hint(self) -> None:
        with pytest.raises(ValidationError, match="spaces"):
            validate_name("my app")

    @pytest.mark.parametrize("name", ["1app", "-app", "app.name", "app/x"])
    def test_invalid_characters(self, name: str) -> None:
        with pytest.raises(ValidationError, match="Must start with a letter"):
            validate_name(name)

    def test_shared_api_handler_name_is_reserved(self) -> None:
        validate_name("api", "project")
        validate_handler_name("apis")

        with pytest.raises(ValidationError, match="Reserved for the shared HTTP API"):
            validate_handler_name("api")

    def test_handler_name_runs_common_checks(self) -> None:
        with pytest.raises(ValidationError, match="underscore"):
            validate_handler_name("send_mail")


class TestResourceNames:
    """Test deterministic resource names."""

    def test_resource_name(self) -> None:
        assert resource_name("shop", "dev", "orders") == "shop-dev-orders"
        assert resource_name("shop", "dev", "orders", "role") == "shop-dev-orders-role"

    def test_resource_name_too_long(self) -> None:
        with pytest.raises(ValidationError, match="Too long"):
            resource_name("p" * 30, "stage", "h" * 30)

    def test_project_name(self) -> None:
        assert project_name("shop", "prod") == "shop-prod"
        assert project_name("shop", "prod", "deps") == "shop-prod-deps"

    def test_queue_name_has_fifo_suffix(self) -> None:
        assert queue_name("shop", "dev", "jobs") == "shop-dev-jobs.fifo"

    def test_bucket_name_is_lowercase(self) -> None:
        assert bucket_name("Shop", "Dev", "Web") == "shop-dev-web-site"

    def test_parameter_path(self) -> None:
        assert parameter_path("shop", "dev", "stripe/key") == "/shop/dev/stripe/key"
        assert parameter_path("shop", "dev", "/stripe/key") == "/shop/dev/stripe/key"


class TestResolveStage:
    """Test stage resolution order."""

    def test_explicit(self, monkeypatch) -> None:
        monkeypatch.setenv("EFF_STAGE", "staging")
        assert resolve_stage("prod") == "prod"

    def test_env_var(self, monkeypatch) -> None:
        monkeypatch.setenv("EFF_STAGE", "staging")
        assert resolve_stage() == "staging"

    def test_default(self) -> None:
        assert resolve_stage() == DEFAULT_STAGE

    def test_validates(self) -> None:
        with pytest.raises(ValidationError):
            resolve_stage("bad_stage")


class TestResolveRegion:
    """Test region resolution order."""

    def test_explicit(self, monkeypatch) -> None:
        monkeypatch.setenv("EFF_REGION", "eu-west-1")
        assert resolve_region("us-west-2") == "us-west-2"

    def test_eff_region_before_aws_region(self, monkeypatch) -> None:
        monkeypatch.setenv("EFF_REGION", "eu-west-1")
        monkeypatch.setenv("AWS_REGION", "us-west-2")
        assert resolve_region() == "eu-west-1"

    def test_aws_region(self, monkeypatch) -> None:
        monkeypatch.setenv("AWS_REGION", "us-west-2")
        assert resolve_region() == "us-west-2"

    def test_default(self, monkeypatch) -> None:
        monkeypatch.delenv("AWS_DEFAULT_REGION", raising=False)
        assert resolve_region() == DEFAULT_REGION
