"""Project manifest (``effortless.yaml``) parsing and validation."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .artifacts import CodeArtifact
from .exceptions import ValidationError
from .models import (
    CODELESS_KINDS,
    KIND_CONFIG_TYPES,
    FunctionDefaults,
    FunctionSettings,
    HandlerDescriptor,
    HandlerKind,
    ParamRef,
)
from .naming import resolve_region, resolve_stage, validate_name

DEFAULT_MANIFEST = "effortless.yaml"

FUNCTION_KEYS = frozenset(f.name for f in dataclasses.fields(FunctionSettings))
HANDLER_KEYS = frozenset({"kind", "name", "code", "deps", "params"})


def load_artifact(path: Path) -> CodeArtifact:
    """Load a prebuilt zip, or zip a build output directory."""
    if path.is_dir():
        return CodeArtifact.from_directory(path)
    if path.is_file():
        return CodeArtifact.from_file(path)
    raise ValidationError("code", str(path), "No such file or directory")


def _tuples(values: dict[str, Any]) -> dict[str, Any]:
    return {k: tuple(v) if isinstance(v, list) else v for k, v in values.items()}


@dataclass(frozen=True)
class HandlerDecl:
    """One handler as written in the manifest."""

    export_name: str
    kind: HandlerKind
    name: str | None = None
    code: str | None = None
    function: dict[str, Any] = field(default_factory=dict)
    settings: dict[str, Any] = field(default_factory=dict)
    deps: tuple[str, ...] = ()
    params: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, export_name: str, d: dict[str, Any]) -> HandlerDecl:
        if not isinstance(d, dict):
            raise ValidationError(export_name, d, "Handler declaration must be a mapping")
        raw_kind = d.get("kind")
        try:
            kind = HandlerKind(raw_kind)
        except ValueError:
            allowed = ", ".join(k.value for k in HandlerKind)
            raise ValidationError(
                f"{export_name}.kind", raw_kind, f"Must be one of: {allowed}"
            ) from None

        config_fields = {f.name for f in dataclasses.fields(KIND_CONFIG_TYPES[kind])}
        function: dict[str, Any] = {}
        settings: dict[str, Any] = {}
        for key, value in d.items():
            if key in HANDLER_KEYS:
                continue
            if key in FUNCTION_KEYS:
                function[key] = value
            elif key in config_fields:
                settings[key] = value
            else:
                raise ValidationError(
                    f"{export_name}.{key}", value, f"Unknown setting for '{kind.value}' handlers"
                )

        return cls(
            export_name=export_name,
            kind=kind,
            name=d.get("name"),
            code=d.get("code"),
            function=function,
            settings=settings,
            deps=tuple(d.get("deps", [])),
            params=dict(d.get("params", {})),
        )

    def to_descriptor(self, base_dir: Path) -> HandlerDescriptor:
        """Resolve paths against ``base_dir`` and build the descriptor."""
        settings = dict(self.settings)
        if self.kind is HandlerKind.STATIC_SITE and "directory" in settings:
            settings["directory"] = str(base_dir / settings["directory"])

        try:
            config = KIND_CONFIG_TYPES[self.kind](**_tuples(settings))
        except TypeError as e:
            raise ValidationError(self.export_name, settings, str(e)) from e

        code = None
        if self.code is not None:
            code = load_artifact(base_dir / self.code)
        elif self.kind not in CODELESS_KINDS:
            raise ValidationError(f"{self.export_name}.code", None, "Required for this kind")

        return HandlerDescriptor(
            export_name=self.export_name,
            kind=self.kind,
            config=config,
            function=FunctionSettings(**_tuples(self.function)),
            code=code,
            deps=self.deps,
            params=tuple(ParamRef(prop, key) for prop, key in self.params.items()),
            name=self.name or "",
        )


@dataclass(frozen=True)
class ProjectManifest:
    """
    Parsed ``effortless.yaml``.

    Example:
        project: shop
        region: eu-central-1
        defaults:
          memory: 512
        layer: build/layer.zip
        handlers:
          orders:
            kind: table
          checkout:
            kind: http
            path: /orders
            code: build/checkout
            deps: [orders]
            params:
              stripe_key: stripe/secret
    """

    project: str
    stage: str | None = None
    region: str | None = None
    defaults: FunctionDefaults = field(default_factory=FunctionDefaults)
    layer: str | None = None
    handlers: tuple[HandlerDecl, ...] = ()
    base_dir: Path = field(default_factory=Path)

    @classmethod
    def from_dict(cls, d: dict[str, Any], base_dir: Path | None = None) -> ProjectManifest:
        if not isinstance(d, dict):
            raise ValidationError("manifest", d, "Must be a mapping")
        project = d.get("project")
        if not project:
            raise ValidationError("project", project, "'project' is required in the manifest")
        validate_name(project, "project")

        defaults_data = d.get("defaults") or {}
        unknown = set(defaults_data) - {f.name for f in dataclasses.fields(FunctionDefaults)}
        if unknown:
            raise ValidationError("defaults", sorted(unknown), "Unknown default setting")

        handlers = tuple(
            HandlerDecl.from_dict(export_name, value)
            for export_name, value in (d.get("handlers") or {}).items()
        )
        return cls(
            project=project,
            stage=d.get("stage"),
            region=d.get("region"),
            defaults=FunctionDefaults(**defaults_data),
            layer=d.get("layer"),
            handlers=handlers,
            base_dir=base_dir or Path("."),
        )

    @classmethod
    def from_yaml(cls, yaml_str: str, base_dir: Path | None = None) -> ProjectManifest:
        import yaml

        data = yaml.safe_load(yaml_str)
        return cls.from_dict(data, base_dir)

    @classmethod
    def load(cls, path: str | Path = DEFAULT_MANIFEST) -> ProjectManifest:
        """Read a manifest file; relative paths in it resolve against its directory."""
        path = Path(path)
        return cls.from_yaml(path.read_text(), path.parent)

    def resolve_stage(self, stage: str | None = None) -> str:
        return resolve_stage(stage or self.stage)

    def resolve_region(self, region: str | None = None) -> str:
        return resolve_region(region or self.region)

    def handler_names(self) -> list[str]:
        return [h.name or h.export_name for h in self.handlers]

    def descriptors(self) -> tuple[HandlerDescriptor, ...]:
        return tuple(h.to_descriptor(self.base_dir) for h in self.handlers)

    def layer_artifact(self) -> CodeArtifact | None:
        if self.layer is None:
            return None
        return load_artifact(self.base_dir / self.layer)

