"""Configuration: frozen process Config plus the model catalog service."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chatgate.errors import ConfigurationError, UnsupportedModelError
from chatgate.routing import AdapterFamily, resolve_family

load_dotenv()

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env(name: str) -> str | None:
    value = os.environ.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class Config:
    """Immutable process configuration.

    Unset fields are resolved from the environment (after ``.env`` loading).

    Example:
        config = Config(models_path=Path("models.json"), use_mock=True)
    """

    models_path: Path | None = None
    #: SQLite file for the usage ledger; *None* keeps usage in memory.
    ledger_path: Path | None = None
    openai_api_key: str | None = None
    anthropic_api_key: str | None = None
    gcp_project: str | None = None
    gcp_location: str | None = None
    #: Bearer token sent when fetching ``gs://`` attachments.
    blob_bearer_token: str | None = None
    use_mock: bool | None = None

    def __post_init__(self) -> None:
        """Resolve unset fields from the environment and validate."""
        resolved: dict[str, Any] = {
            "models_path": self.models_path or _env("CHATGATE_MODELS_PATH"),
            "ledger_path": self.ledger_path or _env("CHATGATE_LEDGER_PATH"),
            "openai_api_key": self.openai_api_key or _env("OPENAI_API_KEY"),
            "anthropic_api_key": self.anthropic_api_key or _env("ANTHROPIC_API_KEY"),
            "gcp_project": self.gcp_project or _env("GOOGLE_CLOUD_PROJECT"),
            "gcp_location": self.gcp_location
            or _env("GOOGLE_CLOUD_LOCATION")
            or "us-central1",
            "blob_bearer_token": self.blob_bearer_token or _env("CHATGATE_BLOB_TOKEN"),
        }
        if self.use_mock is None:
            resolved["use_mock"] = (
                (_env("CHATGATE_USE_MOCK") or "").lower() in _TRUE_VALUES
            )
        for key in ("models_path", "ledger_path"):
            if resolved[key] is not None:
                resolved[key] = Path(resolved[key])
        for key, value in resolved.items():
            object.__setattr__(self, key, value)

        if self.models_path is not None and not self.models_path.is_file():
            raise ConfigurationError(
                f"Model catalog not found: {self.models_path}",
                hint="Set CHATGATE_MODELS_PATH to a JSON model catalog.",
            )

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""

        def redact(value: str | None) -> str | None:
            return "[REDACTED]" if value else None

        return (
            f"Config(models_path={self.models_path!r}, ledger_path={self.ledger_path!r}, "
            f"openai_api_key={redact(self.openai_api_key)}, "
            f"anthropic_api_key={redact(self.anthropic_api_key)}, "
            f"gcp_project={self.gcp_project!r}, gcp_location={self.gcp_location!r}, "
            f"use_mock={self.use_mock})"
        )

    __repr__ = __str__


# --- Model catalog (pydantic wall) ---


class _CatalogModel(BaseModel):
    model_config = ConfigDict(
        frozen=True, populate_by_name=True, protected_namespaces=()
    )


class Pricing(_CatalogModel):
    """USD per million tokens."""

    input: float = Field(ge=0)
    output: float = Field(ge=0)


class ModelSettings(_CatalogModel):
    """Per-model settings from the catalog."""

    type: Literal["reasoning", "normal"] = "normal"
    max_tokens: int | None = Field(default=None, alias="maxTokens", gt=0)
    #: Explicit adapter family; overrides identifier-based dispatch.
    service: AdapterFamily | None = None


class ModelGroup(_CatalogModel):
    """A labelled group of models for client pickers (id → display name)."""

    label: str
    models: dict[str, str] = Field(default_factory=dict)


class ModelCatalog(_CatalogModel):
    """The JSON model catalog."""

    model_groups: tuple[ModelGroup, ...] = Field(default=(), alias="modelGroups")
    models: dict[str, ModelSettings] = Field(
        default_factory=dict, alias="modelConfig"
    )
    monthly_limits_usd: dict[str, float] = Field(
        default_factory=dict, alias="monthlyLimitsUSD"
    )
    pricing: dict[str, Pricing] = Field(
        default_factory=dict, alias="pricingPerMillionTokensUSD"
    )

    def model_ids(self) -> set[str]:
        """Every model id mentioned anywhere in the catalog."""
        ids: set[str] = set(self.models)
        for group in self.model_groups:
            ids.update(group.models)
        return ids


@dataclass
class ConfigService:
    """Load-once-then-serve access to the model catalog.

    Example:
        service = ConfigService.from_path(Path("models.json"))
        pricing = service.pricing_for("gpt-4.1")
    """

    _catalog: ModelCatalog | None = None
    source: Path | None = None
    _families: dict[str, AdapterFamily] = field(default_factory=dict)

    @classmethod
    def from_path(cls, path: Path) -> ConfigService:
        """Create and load a service from a JSON catalog file."""
        service = cls(source=path)
        service.load()
        return service

    @classmethod
    def from_catalog(cls, catalog: ModelCatalog | dict[str, Any]) -> ConfigService:
        """Create a loaded service from an in-memory catalog."""
        if not isinstance(catalog, ModelCatalog):
            catalog = _validate_catalog(catalog, origin="<memory>")
        service = cls()
        service._install(catalog)
        return service

    def load(self) -> ModelCatalog:
        """Parse, validate and install the catalog; later calls are no-ops."""
        if self._catalog is not None:
            return self._catalog
        if self.source is None:
            self._install(ModelCatalog())
            return self.catalog
        try:
            raw = json.loads(self.source.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Could not load model catalog {self.source}: {e}",
                hint="Check that the file exists and contains valid JSON.",
            ) from e
        self._install(_validate_catalog(raw, origin=str(self.source)))
        logger.info(
            "Loaded model catalog from %s (%d models)",
            self.source,
            len(self._families),
        )
        return self.catalog

    def _install(self, catalog: ModelCatalog) -> None:
        families: dict[str, AdapterFamily] = {}
        for model_id in sorted(catalog.model_ids()):
            settings = catalog.models.get(model_id)
            if settings is not None and settings.service is not None:
                families[model_id] = settings.service
                continue
            try:
                families[model_id] = resolve_family(model_id)
            except UnsupportedModelError as e:
                raise ConfigurationError(
                    f"Catalog model {model_id!r} does not map to any adapter family",
                    hint="Set modelConfig[...].service or rename the model.",
                ) from e
        self._catalog = catalog
        self._families = families

    @property
    def catalog(self) -> ModelCatalog:
        """The loaded catalog."""
        if self._catalog is None:
            raise ConfigurationError(
                "Model catalog accessed before load()",
                hint="Call ConfigService.load() at startup.",
            )
        return self._catalog

    def pricing_for(self, model_id: str) -> Pricing | None:
        """Pricing for *model_id*, or None when the model is not priced."""
        return self.catalog.pricing.get(model_id)

    def monthly_limit_for(self, model_id: str) -> float | None:
        """Monthly USD budget for *model_id*; None or 0 means unlimited."""
        limit = self.catalog.monthly_limits_usd.get(model_id)
        return limit if limit else None

    def family_for(self, model_id: str) -> AdapterFamily:
        """Adapter family for *model_id*, falling back to identifier dispatch."""
        family = self._families.get(model_id)
        if family is not None:
            return family
        return resolve_family(model_id)


def _validate_catalog(raw: Any, *, origin: str) -> ModelCatalog:
    try:
        return ModelCatalog.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid model catalog {origin}: {e.error_count()} validation error(s)",
            hint=str(e),
        ) from e
