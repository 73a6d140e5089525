"""stylepilot CLI entry point."""
from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click


@click.group()
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """stylepilot: iterative, model-driven stylesheet refinement."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _open_store(db: str | None):
    from stylepilot.config import PilotConfig
    from stylepilot.store.db import Database
    from stylepilot.store.migrations import run_migrations
    from stylepilot.store.repositories import ArtifactRepository

    config = PilotConfig.from_env(db_path=db)
    database = Database(config.db_path)
    database.connect()
    run_migrations(database)
    return database, ArtifactRepository(database)


@cli.command()
@click.option("--intent", required=True, help="What the restyled page should look like")
@click.option(
    "--snapshot",
    "snapshot_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Element tree JSON",
)
@click.option("--css-out", required=True, type=click.Path(dir_okay=False), help="Stylesheet to write")
@click.option(
    "--capture",
    "capture_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Image file refreshed by an external screenshot tool",
)
@click.option(
    "--image",
    "images",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Reference image (repeatable)",
)
@click.option("--provider", default=None, help="gemini, openai, anthropic or stub")
@click.option("--model", default=None, help="Provider model name")
@click.option("--max-iterations", type=click.IntRange(min=1), default=None)
@click.option(
    "--threshold", type=click.FloatRange(min=0), default=None, help="Quality score that counts as done"
)
@click.option(
    "--stall-ratio",
    type=click.FloatRange(0, 1),
    default=None,
    help="Stop when revisions change less than this",
)
@click.option(
    "--preference",
    "preferences",
    multiple=True,
    help="Write one block per preference (element:preference, repeatable) instead of one combined block",
)
@click.option("--save", "save_label", default=None, help="Save the result as an artifact")
@click.option("--db", default=None, help="Database path")
def refine(
    intent: str,
    snapshot_path: str,
    css_out: str,
    capture_path: str | None,
    images: tuple[str, ...],
    provider: str | None,
    model: str | None,
    max_iterations: int | None,
    threshold: float | None,
    stall_ratio: float | None,
    preferences: tuple[str, ...],
    save_label: str | None,
    db: str | None,
) -> None:
    """Refine a stylesheet until it converges or the budget runs out."""
    from pilot_llm.errors import GatewayError
    from pilot_llm.types import ImageData
    from stylepilot.config import PilotConfig
    from stylepilot.document.file_document import FileDocument
    from stylepilot.model.run import RefinementResult
    from stylepilot.runner import PilotRunner
    from stylepilot.stylesheet import BlockKey, StyleDocument

    try:
        config = PilotConfig.from_env(
            db_path=db,
            llm_provider=provider,
            llm_model=model,
            max_iterations=max_iterations,
            quality_threshold=threshold,
            stall_ratio=stall_ratio,
        )
    except ValueError as exc:
        raise click.ClickException(f"Invalid configuration: {exc}") from exc
    try:
        preference_keys = list(dict.fromkeys(BlockKey.parse(p) for p in preferences))
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--preference") from exc
    document = FileDocument(snapshot_path, css_out, capture_path, class_prefix=config.class_prefix)
    out = Path(css_out)
    stylesheet = StyleDocument.parse(out.read_text(encoding="utf-8")) if out.exists() else None
    references = [ImageData.from_file(p) for p in images]

    runner = PilotRunner(config, document=document)

    async def drive() -> RefinementResult:
        result = None
        try:
            stream = runner.start_refinement(
                intent, references, stylesheet=stylesheet, preference_keys=preference_keys
            )
            async for item in stream:
                if isinstance(item, RefinementResult):
                    result = item
                else:
                    click.echo(item.format(), err=item.level != "info")
        finally:
            await runner.aclose()
        assert result is not None
        return result

    try:
        result = asyncio.run(drive())
    except GatewayError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    if result.failure is not None:
        click.echo(
            f"Failed in {result.failure.stage} at iteration {result.failure.iteration}: "
            f"{result.failure.message}",
            err=True,
        )
        sys.exit(1)

    click.echo(f"Outcome: {result.outcome} after {result.run.iteration} iteration(s)")
    click.echo(f"Stylesheet written to {css_out}")
    if save_label and result.succeeded:
        database, repo = _open_store(db)
        try:
            artifact = repo.save_artifact(save_label, result.document.render(), intent)
        finally:
            database.close()
        click.echo(f"Saved artifact: {artifact.id}")


@cli.command()
@click.argument("stylesheet", type=click.Path(dir_okay=False))
@click.option("--key", default=None, help="Block key as element:preference")
@click.option("--body", default=None, help="CSS to store in the block")
@click.option("--body-file", type=click.Path(exists=True, dir_okay=False), default=None)
@click.option("--remove", is_flag=True, default=False, help="Remove the block")
@click.option("--list", "list_keys", is_flag=True, default=False, help="List block keys")
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None, help="Write here instead of in place")
def patch(
    stylesheet: str,
    key: str | None,
    body: str | None,
    body_file: str | None,
    remove: bool,
    list_keys: bool,
    output: str | None,
) -> None:
    """Insert, replace, remove or list addressable blocks in a stylesheet."""
    from stylepilot.stylesheet import BlockKey, StyleDocument

    path = Path(stylesheet)
    document = StyleDocument.parse(path.read_text(encoding="utf-8") if path.exists() else "")

    if list_keys:
        for block_key in document.keys():
            click.echo(str(block_key))
        return

    if key is None:
        raise click.UsageError("--key is required unless --list is given")
    try:
        block_key = BlockKey.parse(key)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--key") from exc

    if remove:
        if body is not None or body_file is not None:
            raise click.UsageError("--remove cannot be combined with --body or --body-file")
        updated = document.remove(block_key)
        action = "Removed" if block_key in document else "Not present"
    else:
        if body_file is not None:
            body = Path(body_file).read_text(encoding="utf-8")
        if body is None:
            raise click.UsageError("one of --body, --body-file or --remove is required")
        try:
            updated = document.upsert(block_key, body.strip("\n"))
        except ValueError as exc:
            raise click.ClickException(str(exc)) from exc
        action = "Updated" if block_key in document else "Added"

    Path(output or stylesheet).write_text(updated.render(), encoding="utf-8")
    click.echo(f"{action}: {block_key}")


@cli.group()
def artifacts() -> None:
    """Manage saved stylesheets."""


@artifacts.command("list")
@click.option("--limit", type=int, default=20)
@click.option("--offset", type=int, default=0)
@click.option("--db", default=None, help="Database path")
def list_artifacts(limit: int, offset: int, db: str | None) -> None:
    """List saved stylesheets, newest first."""
    database, repo = _open_store(db)
    try:
        items = repo.list_artifacts(limit=limit, offset=offset)
        for artifact in items:
            click.echo(f"{artifact.id}  {artifact.created_at}  {artifact.label}")
        if not items:
            click.echo("No artifacts")
    finally:
        database.close()


@artifacts.command("show")
@click.argument("artifact_id")
@click.option("--db", default=None, help="Database path")
def show_artifact(artifact_id: str, db: str | None) -> None:
    """Print a saved stylesheet."""
    database, repo = _open_store(db)
    try:
        artifact = repo.get_artifact(artifact_id)
    finally:
        database.close()
    if artifact is None:
        raise click.ClickException(f"Artifact not found: {artifact_id}")
    click.echo(artifact.css)


@artifacts.command("save")
@click.argument("label")
@click.option("--file", "css_file", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--description", default="")
@click.option("--db", default=None, help="Database path")
def save_artifact(label: str, css_file: str, description: str, db: str | None) -> None:
    """Save a stylesheet file as an artifact."""
    database, repo = _open_store(db)
    try:
        artifact = repo.save_artifact(label, Path(css_file).read_text(encoding="utf-8"), description)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        database.close()
    click.echo(f"Saved artifact: {artifact.id}")


@artifacts.command("delete")
@click.argument("artifact_id")
@click.option("--db", default=None, help="Database path")
def delete_artifact(artifact_id: str, db: str | None) -> None:
    """Delete a saved stylesheet."""
    database, repo = _open_store(db)
    try:
        deleted = repo.delete_artifact(artifact_id)
    finally:
        database.close()
    if not deleted:
        raise click.ClickException(f"Artifact not found: {artifact_id}")
    click.echo(f"Deleted artifact: {artifact_id}")


@cli.command()
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", default=None, type=int, help="Port to bind to")
@click.option("--db", default=None, help="Database path")
@click.option("--debug/--no-debug", default=False, help="Enable debug mode")
def serve(host: str | None, port: int | None, db: str | None, debug: bool) -> None:
    """Start the stylepilot HTTP API."""
    from stylepilot.config import PilotConfig
    from stylepilot.store.db import Database
    from stylepilot.store.migrations import run_migrations
    from stylepilot.web.app import create_app

    config = PilotConfig.from_env(db_path=db, host=host, port=port)
    database = Database(config.db_path)
    database.connect()
    run_migrations(database)

    app = create_app(db=database, pilot_config=config)
    click.echo(f"Starting stylepilot on {config.host}:{config.port}")
    app.run(host=config.host, port=config.port, debug=debug)
