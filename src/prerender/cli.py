"""Typer CLI entrypoint for prerender."""

from __future__ import annotations

import logging
from pathlib import Path

import typer
import yaml

from prerender.config import AppSettings, load_settings
from prerender.errors import PrerenderError
from prerender.logging_utils import configure_logging
from prerender.pipeline import (
    PipelineOptions,
    PipelineResult,
    run_build_only,
    run_prerender_pipeline,
    serve_application,
)
from prerender.tasks.commands import deploy_task
from prerender.tasks.sequencer import run_task_sequence

app = typer.Typer(
    add_completion=False,
    help="prerender command line interface.",
    no_args_is_help=True,
)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    help="Optional settings YAML path.",
    exists=False,
    file_okay=True,
    dir_okay=False,
    readable=True,
)
PRODUCTION_OPTION = typer.Option(
    False,
    "--production",
    "-p",
    help="Build and render in production mode.",
)


def _load_and_optionally_configure_logger(
    config_file: Path | None,
    configure: bool,
) -> tuple[AppSettings, logging.Logger]:
    settings = load_settings(config_file=config_file)
    if configure:
        logger = configure_logging(settings.paths.logs_root / "prerender.log")
    else:
        logger = logging.getLogger("prerender")
    return settings, logger


def _fail(error: PrerenderError, state: str | None = None) -> typer.Exit:
    where = f"stage {error.stage}" + (f" (state {state})" if state else "")
    typer.echo(f"prerender failed at {where}: {error}", err=True)
    return typer.Exit(code=1)


def _render(settings: AppSettings, production: bool, logger: logging.Logger) -> PipelineResult:
    result = run_prerender_pipeline(settings, options=PipelineOptions(production=production), logger=logger)
    typer.echo(f"run_id: {result.run_id}")
    typer.echo(f"summary_path: {result.summary_path}")
    if not result.succeeded:
        if result.error is not None:
            raise _fail(result.error, result.failed_state)
        typer.echo(f"prerender failed at state {result.failed_state}", err=True)
        raise typer.Exit(code=1)
    for path in result.written_files:
        typer.echo(f"written: {path}")
    typer.echo(f"App has been rendered to {settings.paths.build_root}")
    return result


@app.command("show-config")
def show_config(config_file: Path | None = CONFIG_FILE_OPTION) -> None:
    """Print the effective configuration after env overrides."""

    settings, _ = _load_and_optionally_configure_logger(config_file, configure=False)
    rendered = yaml.safe_dump(settings.as_dict(), sort_keys=False)
    typer.echo(rendered)


@app.command("build")
def build(
    production: bool = PRODUCTION_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Run verify, test, clean and build without prerendering."""

    settings, logger = _load_and_optionally_configure_logger(config_file, configure=True)
    try:
        run_build_only(settings, options=PipelineOptions(production=production), logger=logger)
    except PrerenderError as exc:
        raise _fail(exc) from exc
    typer.echo(f"Build written to {settings.paths.build_root}")


@app.command("render")
def render(
    production: bool = PRODUCTION_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Build the app and prerender configured routes to static files."""

    settings, logger = _load_and_optionally_configure_logger(config_file, configure=True)
    _render(settings, production, logger)


@app.command("serve")
def serve(
    production: bool = PRODUCTION_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Clean, build, and run the application server in the foreground."""

    settings, logger = _load_and_optionally_configure_logger(config_file, configure=True)
    try:
        returncode = serve_application(settings, options=PipelineOptions(production=production), logger=logger)
    except PrerenderError as exc:
        raise _fail(exc) from exc
    raise typer.Exit(code=returncode)


@app.command("deploy")
def deploy(
    production: bool = PRODUCTION_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Prerender, then publish the build directory with the deploy command."""

    settings, logger = _load_and_optionally_configure_logger(config_file, configure=True)
    _render(settings, production, logger)
    try:
        run_task_sequence([deploy_task(settings)], logger=logger)
    except PrerenderError as exc:
        raise _fail(exc) from exc
    typer.echo("Deploy finished.")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
