"""Command-line interface for the caption pipeline using Typer.

Commands:
- ``serve`` runs the REST API with uvicorn.
- ``build-captions`` renders a caption file from a segments JSON file.
- ``trigger-render`` dispatches a render for an upload using the configured stores.
- ``portals`` lists configured export portals.
"""

from __future__ import annotations

import json
import pathlib
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from caption_pipeline import __version__
from caption_pipeline.captions import CAPTION_TEMPLATES, build_caption_file, resolve_template_name
from caption_pipeline.config import RENDER_RESOLUTIONS, normalize_resolution
from caption_pipeline.errors import CaptionPipelineError
from caption_pipeline.utils.constant import (
    API_SERVER_NAME,
    API_SERVER_PORT,
    DEFAULT_RESOLUTION,
    DEFAULT_TEMPLATE,
)
from caption_pipeline.utils.logging_config import configure_logging, get_logger

logger = get_logger(__name__)
console = Console()


def version_callback(value: bool) -> None:
    """Show the application's version and exit.

    Raises:
        typer.Exit: Always raised after printing when value is True.
    """
    if value:
        print(f"caption-pipeline version: {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="caption-pipeline",
    help="Build caption overlays and coordinate render jobs for a remote rendering worker.",
    add_completion=False,
)


@app.callback(invoke_without_command=True)
def root(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show the application's version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Enable debug logging.")
    ] = False,
) -> None:
    """Print help when no subcommand is given."""
    configure_logging(verbose=verbose)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command()
def serve(
    host: Annotated[
        str, typer.Option("--host", help="Server hostname or IP address to bind to.")
    ] = API_SERVER_NAME,
    port: Annotated[int, typer.Option("--port", help="Server port number.")] = API_SERVER_PORT,
    debug: Annotated[
        bool, typer.Option("--debug", help="Enable debug mode with verbose logging.")
    ] = False,
) -> None:
    """Run the REST API."""
    configure_logging(level="DEBUG" if debug else "INFO")

    from caption_pipeline.api.app import create_app

    import uvicorn

    uvicorn.run(
        create_app(),
        host=host,
        port=port,
        log_level="debug" if debug else "info",
    )


def _load_segments(path: pathlib.Path) -> list[dict]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("segments", [])
    if not isinstance(data, list):
        raise typer.BadParameter("Segments file must hold a list or an object with 'segments'.")
    return data


@app.command("build-captions")
def build_captions(
    segments_file: Annotated[
        pathlib.Path,
        typer.Argument(exists=True, dir_okay=False, help="JSON file with caption segments (seconds)."),
    ],
    template: Annotated[
        str,
        typer.Option(
            "--template", "-t", help=f"Caption template ({', '.join(sorted(CAPTION_TEMPLATES))})."
        ),
    ] = DEFAULT_TEMPLATE,
    resolution: Annotated[
        str,
        typer.Option(
            "--resolution", "-r", help=f"Canvas preset ({', '.join(RENDER_RESOLUTIONS)})."
        ),
    ] = DEFAULT_RESOLUTION,
    styles_file: Annotated[
        pathlib.Path | None,
        typer.Option("--styles", exists=True, dir_okay=False, help="JSON file with style overrides."),
    ] = None,
    output: Annotated[
        pathlib.Path | None,
        typer.Option("--output", "-o", help="Write the caption file here instead of stdout."),
    ] = None,
) -> None:
    """Render a caption file locally without touching storage or the worker."""
    from caption_pipeline.segments import normalize_segments, rebuild_karaoke_words

    segments = normalize_segments(_load_segments(segments_file))
    canvas = RENDER_RESOLUTIONS[normalize_resolution(resolution)]
    styles = {"playResX": canvas.width, "playResY": canvas.height}
    if styles_file is not None:
        styles.update(json.loads(styles_file.read_text(encoding="utf-8")))

    try:
        if resolve_template_name(template) == "karaoke":
            segments = rebuild_karaoke_words(segments)
        caption = build_caption_file(template, segments, styles)
    except CaptionPipelineError as exc:
        typer.secho(f"Error: {exc.message}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    if output is None:
        typer.echo(caption.content, nl=False)
    else:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(caption.content, encoding="utf-8")
        typer.secho(f"Wrote {caption.format.upper()} captions to {output}", fg=typer.colors.GREEN)
    typer.echo(f"sha256: {caption.sha256}", err=True)


@app.command("trigger-render")
def trigger_render(
    upload_id: Annotated[str, typer.Argument(help="Upload to render.")],
    template: Annotated[str, typer.Option("--template", "-t")] = DEFAULT_TEMPLATE,
    resolution: Annotated[str, typer.Option("--resolution", "-r")] = DEFAULT_RESOLUTION,
) -> None:
    """Render an upload's latest transcript through the configured worker."""
    from caption_pipeline.api.context import ServiceContext
    from caption_pipeline.render.models import RenderRequest

    context = ServiceContext.build()
    try:
        outcome = context.orchestrator.trigger_render(
            RenderRequest(uploadId=upload_id, template=template, resolution=resolution),
            user_id=None,
        )
    except CaptionPipelineError as exc:
        typer.secho(f"Error: {exc.message} ({exc.code})", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    finally:
        context.close()

    if outcome.skipped:
        typer.secho("Existing render matches caption hash; reused.", fg=typer.colors.YELLOW)
    typer.echo(json.dumps(outcome.to_response(), indent=2))


@app.command()
def portals() -> None:
    """List configured export portals."""
    from caption_pipeline.api.context import ServiceContext

    context = ServiceContext.build()
    try:
        configured = context.exports.list_portals()
    finally:
        context.close()

    if not configured:
        typer.secho("No export portals configured.", fg=typer.colors.YELLOW)
        return

    table = Table(title="Export Portals", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="green")
    table.add_column("URL", style="yellow")
    for portal in configured:
        table.add_row(portal.id, portal.name, portal.url)
    console.print(table)


def main() -> None:
    """Run the caption pipeline CLI."""
    app()


if __name__ == "__main__":
    main()
