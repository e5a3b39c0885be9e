import logging
import sys
from pathlib import Path

import rich_click as click
import uvicorn
from rich.traceback import install

from graphgate import __version__, log
from graphgate.config import DEFAULT_HOST, DEFAULT_PORT, GatewayConfig, build_gateway, load_config
from graphgate.errors import CompositionError, ConfigError
from graphgate.gateway import Gateway
from graphgate.server import create_gateway_app, create_service_app
from graphgate.services import SERVICES, get_service

config_option = click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Gateway configuration file (YAML). Defaults to the bundled book and author services.",
)


def _load_gateway(config_path: Path | None) -> tuple[GatewayConfig, Gateway]:
    try:
        config = load_config(config_path)
        return config, build_gateway(config)
    except ConfigError as e:
        log.error(f"Invalid configuration: {e}")
        sys.exit(1)
    except CompositionError as e:
        log.error(f"Composition failed: {e}")
        log.hint("Declare a merge key for types shared between services.")
        sys.exit(1)


@click.group(context_settings={"auto_envvar_prefix": "graphgate"})
@click.option(
    "-l",
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default="INFO",
    help="Log level",
    show_default=True,
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, writable=True, path_type=Path),
    help="Log file",
)
@click.version_option(__version__)
def cli(log_level: str, log_file: Path | None) -> None:
    """Compose GraphQL services into one schema and serve it."""
    if log_file:
        file_handler = logging.FileHandler(log_file, mode="w")
        file_handler.setFormatter(logging.Formatter("%(asctime)s:%(levelname)s:%(message)s"))
        log.addHandler(file_handler)

    log.setLevel(log_level.upper())
    if log_level.upper() == "DEBUG":
        _ = install(show_locals=True)


@click.command()
@config_option
@click.option("--host", type=str, help=f"Bind address [default: configuration or {DEFAULT_HOST}]")
@click.option("--port", "-p", type=int, help=f"Port [default: configuration or {DEFAULT_PORT}]")
def serve(config_path: Path | None, host: str | None, port: int | None) -> None:
    """Compose the configured services and run the gateway."""
    config, gateway = _load_gateway(config_path)
    host = host or config.host
    port = port or config.port
    log.success(f"Gateway ready at http://{host}:{port}/graphql")
    uvicorn.run(create_gateway_app(gateway), host=host, port=port, log_level=log.getEffectiveLevel())


@click.command()
@click.argument("name", type=click.Choice(sorted(SERVICES)))
@click.option("--host", type=str, default=DEFAULT_HOST, show_default=True, help="Bind address")
@click.option("--port", "-p", type=int, help="Port [default: the service's own port]")
def service(name: str, host: str, port: int | None) -> None:
    """Run one of the bundled backend services."""
    descriptor = get_service(name)
    port = port or descriptor.port
    log.success(f"{descriptor.name} ready at http://{host}:{port}/graphql")
    uvicorn.run(create_service_app(descriptor), host=host, port=port, log_level=log.getEffectiveLevel())


@click.command()
@config_option
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, writable=True, path_type=Path),
    required=False,
    help="Output file",
)
def compose(config_path: Path | None, output: Path | None) -> None:
    """Print the composed schema as SDL, or write it to a file."""
    _, gateway = _load_gateway(config_path)
    sdl = gateway.composed.print_sdl()
    if output is None:
        click.echo(sdl)
        return

    output.write_text(sdl, encoding="utf-8")
    log.success(f"Composed schema written to {output}")


@click.command()
@config_option
def plan(config_path: Path | None) -> None:
    """Show which service resolves each field of the composed schema."""
    _, gateway = _load_gateway(config_path)
    delegation_plan = gateway.composed.plan

    log.rule("Field owners")
    for coordinate, owner in delegation_plan.as_dict().items():
        log.key_value(coordinate, owner)

    if delegation_plan.lookups:
        log.rule("Lookups")
        for (type_name, subschema), merge in sorted(delegation_plan.lookups.items(), key=lambda item: item[0]):
            log.key_value(f"{type_name}@{subschema}", f"{merge.field_name}({merge.argument}: {type_name}.{merge.key})")


cli.add_command(serve)
cli.add_command(service)
cli.add_command(compose)
cli.add_command(plan)


if __name__ == "__main__":
    cli()
