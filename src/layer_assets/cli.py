"""CLI for inspecting layer names and documents, replaying change logs and talking to a running host."""

import asyncio
import json
import ntpath
import posixpath
import tempfile
from pathlib import Path
from typing import Annotated, Any

import requests
import typer
from loguru import logger

from layer_assets.config import GeneratorConfig, load_config
from layer_assets.core.error_log import ErrorLog
from layer_assets.core.exporter import AssetExporter, ExportRequest
from layer_assets.core.reconciler import ReconciliationService
from layer_assets.dom.document import Document
from layer_assets.dom.layer import Layer, layer_size
from layer_assets.exceptions import AssetsError, StructuralAmbiguityError
from layer_assets.host import HostApi
from layer_assets.logging_config import configure_logging
from layer_assets.naming.analyzer import analyze_layer_name, collect_errors
from layer_assets.offline import OfflineHost
from layer_assets.protocols import EventSourceProtocol, HostProtocol

app = typer.Typer(help="Layer assets: export image assets named by their layers.")

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Generator config JSON (default: first of the standard locations)"),
]
UrlArgument = Annotated[str, typer.Argument(help="Base URL of the host's JSON API")]
TimeoutOption = Annotated[float, typer.Option("--timeout", help="Seconds to wait for each host reply")]

# Failures of a running host: HTTP problems and error replies.
HOST_ERRORS = (requests.RequestException, RuntimeError)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    configure_logging(verbose=verbose)


def _load_config(config_path: Path | None) -> GeneratorConfig:
    try:
        return load_config(config_path)
    except (OSError, ValueError) as e:
        logger.error("Cannot load config: {}", e)
        raise typer.Exit(1) from e


def _load_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error("Cannot read {}: {}", path, e)
        raise typer.Exit(1) from e


def _load_events(path: Path) -> list[dict[str, Any]]:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        logger.error("Cannot read {}: {}", path, e)
        raise typer.Exit(1) from e
    events: list[dict[str, Any]] = []
    for number, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            events.append(json.loads(line))
        except ValueError as e:
            logger.error("{}:{}: invalid JSON: {}", path, number, e)
            raise typer.Exit(1) from e
    return events


@app.command()
def parse(
    name: Annotated[str, typer.Argument(help="Layer name to parse")],
    as_json: bool = typer.Option(False, "--json", help="Print components as JSON"),
    config_path: ConfigOption = None,
) -> None:
    """Show the components a layer name produces, with their errors."""
    specs = analyze_layer_name(name, _load_config(config_path))
    if as_json:
        typer.echo(
            json.dumps(
                [{"component": spec.component.to_dict(), "errors": list(spec.errors)} for spec in specs],
                indent=2,
                ensure_ascii=False,
            )
        )
    else:
        for spec in specs:
            component = spec.component
            target = component.relative_path or ("(defaults)" if component.default else "(no file)")
            typer.echo(f"{component.name!r} -> {target}")
            for key, value in component.to_dict().items():
                if key not in ("name", "file", "folder"):
                    typer.echo(f"    {key}: {value}")
            for error in spec.errors:
                typer.echo(f"    error: {error}")
    if any(spec.errors for spec in specs):
        raise typer.Exit(1)


def format_tree(group: Layer, *, offset: int = 0, depth: int = 0) -> list[str]:
    """Lines describing the children of `group`, top first, with their flat indices."""
    placed: list[tuple[int, Layer]] = []
    current_index = offset
    for child in group.layers or []:
        current_index += layer_size(child) - 1
        placed.append((current_index, child))
        current_index += 1

    lines: list[str] = []
    for index, child in reversed(placed):
        lines.append(f"{index:>4}  {'  ' * depth}{child.id}: {child.name or '-'} ({child.kind.value})")
        if child.layers is not None:
            lines.extend(format_tree(child, offset=index - layer_size(child) + 2, depth=depth + 1))
    return lines


@app.command()
def tree(
    document_path: Annotated[Path, typer.Argument(help="Raw document description (JSON)")],
) -> None:
    """Print the layer tree of a document with flat indices."""
    raw = _load_json(document_path)
    try:
        document = Document.from_raw(raw)
    except (StructuralAmbiguityError, KeyError, TypeError) as e:
        logger.error("Cannot build document from {}: {}", document_path, e)
        raise typer.Exit(1) from e
    typer.echo(f"Document {document.id}: {document.file or '(no file)'}")
    for line in format_tree(document.root):
        typer.echo(line)


def relocate(raw: dict[str, Any], output_dir: Path) -> dict[str, Any]:
    """Pretend a saved document lives in `output_dir`, so that replays write nowhere else."""
    file = raw.get("file")
    if isinstance(file, str) and ("/" in file or "\\" in file):
        name = ntpath.basename(file) if "\\" in file else posixpath.basename(file)
        return {**raw, "file": str(output_dir / name)}
    return raw


async def run_replay(
    raw_document: dict[str, Any],
    events: list[dict[str, Any]],
    output_dir: Path,
    config: GeneratorConfig,
) -> ReconciliationService:
    """Feed a document and its change events through a service backed by an OfflineHost."""
    raw_document = relocate(raw_document, output_dir)
    host = OfflineHost([raw_document])
    service = ReconciliationService(host, config, enable_by_default=True, fallback_directory=output_dir)
    try:
        await service.start()
        for event in events:
            event = relocate(event, output_dir)
            host.apply_event(event)
            await service.handle_change(event)
        await service.wait_idle()
    finally:
        service.close()
    return service


@app.command()
def replay(
    document_path: Annotated[Path, typer.Argument(help="Raw document description (JSON)")],
    events_path: Annotated[Path, typer.Argument(help="Change events, one JSON object per line")],
    output_dir: Annotated[
        Path | None,
        typer.Option("--output-dir", "-o", help="Where to generate assets (default: a temporary directory)"),
    ] = None,
    config_path: ConfigOption = None,
) -> None:
    """Replay change events against a document and print the resulting tree and assets."""
    config = _load_config(config_path)
    raw_document = _load_json(document_path)
    events = _load_events(events_path)

    with tempfile.TemporaryDirectory(prefix="layer-assets-replay-") as tmp:
        target = output_dir.expanduser().resolve() if output_dir is not None else Path(tmp)
        target.mkdir(parents=True, exist_ok=True)
        try:
            service = asyncio.run(run_replay(raw_document, events, target, config))
        except AssetsError as e:
            logger.error("Replay failed: {}", e)
            raise typer.Exit(1) from e

    for context in service.contexts.values():
        if context.document is not None:
            typer.echo(f"Document {context.document_id}: {context.document.file or '(no file)'}")
            for line in format_tree(context.document.root):
                typer.echo(line)
        typer.echo(f"Assets ({context.asset_generation_dir}):")
        paths = sorted(path for source in context.sources() for path in source.relative_paths())
        for path in paths:
            typer.echo(f"  {path}")
        for layer_id in sorted(context.layers):
            for error in context.error_log.errors_for(layer_id):
                typer.echo(f"  ! {error.rstrip()}")
        for comp_id in sorted(context.comps):
            for error in context.error_log.errors_for(comp_id, source_type=ErrorLog.COMP):
                typer.echo(f"  ! {error.rstrip()}")


async def run_watch(
    host: EventSourceProtocol,
    config: GeneratorConfig,
    *,
    interval: float,
    polls: int | None = None,
    enable_by_default: bool = False,
) -> ReconciliationService:
    """Keep the assets of a running host's documents up to date.

    Polls the host for change events every `interval` seconds, forever or
    `polls` times. A failing event is logged and the next one processed.
    """
    service = ReconciliationService(host, config, enable_by_default=enable_by_default)
    try:
        await service.start()
        done = 0
        while polls is None or done < polls:
            for event in await host.get_change_events():
                try:
                    await service.handle_change(event)
                except AssetsError as e:
                    logger.error("Change to document {} failed: {}", event.get("id"), e)
            done += 1
            await asyncio.sleep(interval)
        await service.wait_idle()
    finally:
        service.close()
    return service


@app.command()
def watch(
    url: UrlArgument,
    interval: Annotated[float, typer.Option("--interval", "-i", help="Seconds between polls for changes")] = 0.5,
    polls: Annotated[
        int | None, typer.Option("--polls", help="Stop after this many polls (default: run until interrupted)")
    ] = None,
    enable: bool = typer.Option(False, "--enable", help="Generate assets for documents without a setting"),
    timeout: TimeoutOption = 30.0,
    config_path: ConfigOption = None,
) -> None:
    """Generate assets for the documents open in a running host as they change."""
    config = _load_config(config_path)
    host = HostApi(url, timeout=timeout)
    logger.info("Watching {}", url)
    try:
        asyncio.run(run_watch(host, config, interval=interval, polls=polls, enable_by_default=enable))
    except KeyboardInterrupt:
        logger.info("Stopped")
    except (*HOST_ERRORS, AssetsError) as e:
        logger.error("Watching failed: {}", e)
        raise typer.Exit(1) from e


async def run_export(host: HostProtocol, config: GeneratorConfig, request: ExportRequest) -> Path:
    exporter = AssetExporter(host, config)
    try:
        return await exporter.export_component(request)
    finally:
        exporter.close()


@app.command()
def export(
    url: UrlArgument,
    name: Annotated[str, typer.Argument(help='Component to render, written like a layer name ("200% icon.png")')],
    document_id: Annotated[
        int | None, typer.Option("--document", "-d", help="Document id (default: the active document)")
    ] = None,
    layer_id: Annotated[
        int | None, typer.Option("--layer", "-l", help="Layer id (default: the whole document)")
    ] = None,
    comp_id: Annotated[int | None, typer.Option("--comp", help="Layer comp to render the document in")] = None,
    path: Annotated[
        Path | None, typer.Option("--path", "-p", help="Destination (default: the document's asset directory)")
    ] = None,
    timeout: TimeoutOption = 30.0,
    config_path: ConfigOption = None,
) -> None:
    """Render one component of a layer or document on demand and print where it was saved."""
    config = _load_config(config_path)
    specs = analyze_layer_name(name, config)
    if len(specs) != 1 or specs[0].errors or specs[0].component.relative_path is None:
        for error in collect_errors(specs):
            logger.error(error)
        logger.error("Expected exactly one valid file component in {!r}", name)
        raise typer.Exit(1)

    component = specs[0].component
    request = ExportRequest(
        component,
        document_id=document_id,
        layer_id=layer_id,
        comp_id=comp_id,
        path=str(path.expanduser().resolve()) if path is not None else None,
        file_name=component.relative_path if path is None else None,
    )
    try:
        written = asyncio.run(run_export(HostApi(url, timeout=timeout), config, request))
    except (*HOST_ERRORS, AssetsError) as e:
        logger.error("Export failed: {}", e)
        raise typer.Exit(1) from e
    typer.echo(str(written))
