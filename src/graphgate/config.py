from pathlib import Path
from typing import Any

import yaml
from ariadne import load_schema_from_path
from ariadne.exceptions import GraphQLFileSyntaxError
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from graphgate import log
from graphgate.composer import MergedTypeConfig, Subschema, compose_schemas
from graphgate.errors import ConfigError, GraphGateError
from graphgate.executors import DEFAULT_TIMEOUT, Executor, HttpExecutor, LocalExecutor
from graphgate.gateway import Gateway
from graphgate.services import SERVICES, get_service
from graphgate.transforms import ProvenanceTransform, Transform
from graphgate.typegraph import TypeGraph

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 4000


class MergedTypeConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    key: str = "id"
    field_name: str = Field(alias="fieldName")
    argument: str = "id"

    def to_config(self) -> MergedTypeConfig:
        return MergedTypeConfig(key=self.key, field_name=self.field_name, argument=self.argument)


class ServiceConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: str
    url: str | None = None
    schema_path: Path | None = Field(None, alias="schemaPath")
    timeout: float | None = DEFAULT_TIMEOUT
    provenance: bool = True
    local: bool = False
    merge: dict[str, MergedTypeConfigModel] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_source(self) -> "ServiceConfig":
        bundled = self.name in SERVICES
        if self.local and not bundled:
            raise ValueError(f"'local' requires a bundled service, '{self.name}' is not one")
        if self.schema_path is None and not bundled:
            raise ValueError(f"Service '{self.name}' is not bundled and needs a 'schemaPath'")
        if self.url is None and not self.local and not bundled:
            raise ValueError(f"Service '{self.name}' needs a 'url'")
        return self


class GatewayConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    services: list[ServiceConfig] = Field(
        default_factory=lambda: [ServiceConfig(name="book-service"), ServiceConfig(name="author-service")]
    )


def load_config(path: Path | None = None) -> GatewayConfig:
    """Load the gateway configuration from a YAML file.

    Args:
        path: YAML file; the default configuration is returned when None

    Returns:
        The validated configuration

    Raises:
        ConfigError: If the file cannot be read or does not match the expected shape
    """
    if path is None:
        return GatewayConfig()

    try:
        data: Any = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        config = GatewayConfig.model_validate(data)
    except (OSError, yaml.YAMLError, ValidationError) as e:
        raise ConfigError(f"Invalid gateway configuration in {path}: {e}") from e

    # Relative schema paths are resolved against the config file location
    for service in config.services:
        if service.schema_path is not None and not service.schema_path.is_absolute():
            service.schema_path = path.parent / service.schema_path
    log.debug(f"Loaded configuration for {len(config.services)} service(s) from {path}")
    return config


def build_subschema(service: ServiceConfig) -> Subschema:
    """Create the subschema for one configured service."""
    if service.schema_path is not None:
        try:
            type_graph = TypeGraph.from_sdl(load_schema_from_path(service.schema_path))
        except (OSError, GraphQLFileSyntaxError, GraphGateError) as e:
            raise ConfigError(f"Cannot load schema of '{service.name}' from {service.schema_path}: {e}") from e
    else:
        type_graph = get_service(service.name).type_graph()

    executor: Executor
    if service.local:
        descriptor = get_service(service.name)
        executor = LocalExecutor(service.name, descriptor.executable_schema())
    else:
        url = service.url or get_service(service.name).url
        executor = HttpExecutor(service.name, url, timeout=service.timeout or DEFAULT_TIMEOUT)

    transforms: tuple[Transform, ...] = (ProvenanceTransform(service.name),) if service.provenance else ()
    return Subschema(
        name=service.name,
        type_graph=type_graph,
        executor=executor,
        transforms=transforms,
        merge={type_name: merge.to_config() for type_name, merge in service.merge.items()},
        timeout=service.timeout,
    )


def build_gateway(config: GatewayConfig) -> Gateway:
    """Compose the configured services into a gateway.

    Raises:
        ConfigError: If a service schema cannot be loaded
        CompositionError: If the schemas cannot be composed
    """
    subschemas = [build_subschema(service) for service in config.services]
    return Gateway(compose_schemas(subschemas))
