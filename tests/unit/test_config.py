"""Tests for manifest parsing."""

import zipfile
from io import BytesIO

import pytest

from effortless_deploy.config import HandlerDecl, ProjectManifest, load_artifact
from effortless_deploy.exceptions import ValidationError
from effortless_deploy.models import (
    FunctionDefaults,
    HandlerKind,
    HttpConfig,
    ParamRef,
    StaticSiteConfig,
    TableConfig,
)

MANIFEST = """
project: shop
region: eu-central-1
defaults:
  memory: 512
handlers:
  orders:
    kind: table
    batch_size: 50
  checkout:
    kind: http
    method: POST
    path: /orders
    code: build/checkout
    memory: 1024
    permissions: [s3:GetObject]
    deps: [orders]
    params:
      stripeKey: stripe/secret
  site:
    kind: site
    directory: dist
    spa: true
"""


@pytest.fixture
def project_dir(tmp_path):
    (tmp_path / "build" / "checkout").mkdir(parents=True)
    (tmp_path / "build" / "checkout" / "index.py").write_text("def handler(event, context): ...\n")
    (tmp_path / "dist").mkdir()
    (tmp_path / "effortless.yaml").write_text(MANIFEST)
    return tmp_path


class TestProjectManifest:
    """Test ProjectManifest."""

    def test_load(self, project_dir) -> None:
        manifest = ProjectManifest.load(project_dir / "effortless.yaml")

        assert manifest.project == "shop"
        assert manifest.defaults == FunctionDefaults(memory=512)
        assert manifest.resolve_region() == "eu-central-1"
        assert manifest.handler_names() == ["orders", "checkout", "site"]

    def test_descriptors(self, project_dir) -> None:
        orders, checkout, site = ProjectManifest.load(project_dir / "effortless.yaml").descriptors()

        assert orders.kind is HandlerKind.TABLE
        assert orders.config == TableConfig(batch_size=50)
        assert orders.code is None

        assert checkout.config == HttpConfig("POST", "/orders")
        assert checkout.function.memory == 1024
        assert checkout.function.permissions == ("s3:GetObject",)
        assert checkout.deps == ("orders",)
        assert checkout.params == (ParamRef("stripeKey", "stripe/secret"),)
        with zipfile.ZipFile(BytesIO(checkout.code.content)) as archive:
            assert archive.namelist() == ["index.py"]

        assert site.config == StaticSiteConfig(str(project_dir / "dist"), spa=True)

    def test_project_is_required(self) -> None:
        with pytest.raises(ValidationError, match="required"):
            ProjectManifest.from_dict({"handlers": {}})

    def test_invalid_project_name(self) -> None:
        with pytest.raises(ValidationError):
            ProjectManifest.from_dict({"project": "My Shop"})

    def test_unknown_default(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            ProjectManifest.from_dict({"project": "shop", "defaults": {"memroy": 512}})

        assert exc_info.value.field == "defaults"

    def test_stage_resolution_order(self, monkeypatch) -> None:
        manifest = ProjectManifest.from_dict({"project": "shop", "stage": "staging"})

        monkeypatch.setenv("EFF_STAGE", "qa")
        assert manifest.resolve_stage("prod") == "prod"
        assert manifest.resolve_stage() == "staging"
        assert ProjectManifest.from_dict({"project": "shop"}).resolve_stage() == "qa"

    def test_layer_artifact(self, tmp_path) -> None:
        (tmp_path / "layer.zip").write_bytes(b"PK-layer")
        manifest = ProjectManifest.from_dict(
            {"project": "shop", "layer": "layer.zip"}, base_dir=tmp_path
        )

        assert manifest.layer_artifact().content == b"PK-layer"
        assert ProjectManifest.from_dict({"project": "shop"}).layer_artifact() is None


class TestHandlerDecl:
    """Test per-handler validation."""

    def test_unknown_key(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            HandlerDecl.from_dict("orders", {"kind": "table", "path": "/orders"})

        assert exc_info.value.field == "orders.path"
        assert "Unknown setting for 'table' handlers" in str(exc_info.value)

    def test_bad_kind(self) -> None:
        with pytest.raises(ValidationError, match="Must be one of: http, table"):
            HandlerDecl.from_dict("checkout", {"kind": "lambda"})

    def test_code_required_for_function_kinds(self, tmp_path) -> None:
        decl = HandlerDecl.from_dict("checkout", {"kind": "http"})

        with pytest.raises(ValidationError, match="Required"):
            decl.to_descriptor(tmp_path)

    def test_explicit_name(self, tmp_path) -> None:
        decl = HandlerDecl.from_dict("ordersTable", {"kind": "table", "name": "orders"})

        assert decl.to_descriptor(tmp_path).name == "orders"

    def test_shared_api_name_is_reserved(self, tmp_path) -> None:
        decl = HandlerDecl.from_dict("orders", {"kind": "table", "name": "api"})

        with pytest.raises(ValidationError, match="Reserved for the shared HTTP API"):
            decl.to_descriptor(tmp_path)

    def test_manifest_rejects_handler_named_api(self, tmp_path) -> None:
        manifest = ProjectManifest.from_dict(
            {"project": "shop", "handlers": {"api": {"kind": "table"}}}, base_dir=tmp_path
        )

        with pytest.raises(ValidationError, match="Reserved"):
            manifest.descriptors()


class TestLoadArtifact:
    def test_missing_path(self, tmp_path) -> None:
        with pytest.raises(ValidationError, match="No such file"):
            load_artifact(tmp_path / "nope")
