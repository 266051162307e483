#!/usr/bin/env python3
"""Main CLI entry point for consentkeeper using Typer.

Commands:
    visit     Open a page in a browser and run a full page session
    classify  Classify a cookie name with the local classifier
    review    List and decide cookies waiting in the review queue
    version   Show version information
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from playwright.async_api import async_playwright

from .. import __version__
from ..banner.driver import PlaywrightPageDriver
from ..config import ConsentKeeperConfig, get_config
from ..cookies.classification import classify_cookie
from ..cookies.manifest import ManifestLoader
from ..cookies.models import ReviewStatus
from ..cookies.pipeline import ClassificationPipeline
from ..cookies.review import ReviewQueue
from ..cookies.store import PlaywrightCookieStore
from ..errors import ConsentKeeperError
from ..service.background import BackgroundService
from ..service.client import ServiceClient
from ..session import PageSession, SessionReport
from ..storage import JsonStateStore

logger = logging.getLogger(__name__)

DEFAULT_PARTITION = "default"

app = typer.Typer(
    name="consentkeeper",
    help="consentkeeper - consent prompt resolution and cookie enforcement",
    add_completion=False,
)

review_app = typer.Typer(help="Inspect and decide the cookie review queue")
app.add_typer(review_app, name="review")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_config(config_dir: Optional[Path], env: Optional[str]) -> ConsentKeeperConfig:
    return get_config(environment=env, config_dir=config_dir, force_reload=True)


def _state_store(config: ConsentKeeperConfig, state_file: Optional[Path]) -> JsonStateStore:
    path = state_file or config.storage.state_path
    if path is None:
        typer.echo("No state file configured; pass --state-file", err=True)
        raise typer.Exit(code=2)
    return JsonStateStore(path)


@app.callback()
def main(
    log_level: Annotated[
        str,
        typer.Option("--log-level", help="Logging level (debug, info, warning, error)")
    ] = "warning",
):
    """
    consentkeeper - answers cookie consent prompts according to your
    preferences and removes the cookies you did not agree to.
    """
    _setup_logging(log_level)


@app.command(name="version")
def show_version():
    """Show version information."""
    typer.echo(f"consentkeeper v{__version__}")


async def _visit(
    url: str,
    config: ConsentKeeperConfig,
    state: JsonStateStore,
    headless: bool,
    timeout_s: float
) -> SessionReport:
    store = PlaywrightCookieStore()

    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(headless=headless)
        context = await browser.new_context()
        store.register_context(context, DEFAULT_PARTITION)

        service = BackgroundService(
            config,
            store,
            state,
            open_pages=lambda: [p.url for p in context.pages],
        )
        manifest_loader = ManifestLoader(config.manifest)
        await service.start()
        try:
            page = await context.new_page()
            await page.goto(url, wait_until="domcontentloaded", timeout=timeout_s * 1000)

            client = ServiceClient(service, timeout_s=config.service.request_timeout_s)
            pipeline = ClassificationPipeline(
                client,
                manifest_loader=manifest_loader,
                classifier_config=config.classifier,
            )
            session = PageSession(
                PlaywrightPageDriver(page, partition_id=DEFAULT_PARTITION),
                client,
                service.preferences,
                config,
                pipeline=pipeline,
            )
            return await session.run()
        finally:
            await manifest_loader.aclose()
            await service.stop()
            await browser.close()


def _print_report(report: SessionReport) -> None:
    typer.echo(f"URL: {report.url}")
    if report.skipped:
        typer.echo(f"Skipped: {report.skipped}")
        return

    if report.tcf:
        typer.echo(f"IAB TCF: gdprApplies={report.tcf.get('gdprApplies')} vendors={report.tcf.get('vendorCount')}")

    resolution = report.resolution
    if resolution is None:
        typer.echo("Consent prompt: detection disabled")
    elif resolution.skipped:
        typer.echo(f"Consent prompt: skipped ({resolution.skipped})")
    elif resolution.method is None:
        typer.echo(f"Consent prompt: none handled after {resolution.attempts} attempts")
    else:
        line = f"Consent prompt: {resolution.state.value} via {resolution.method.value}"
        if resolution.platform:
            line += f" ({resolution.platform})"
        if resolution.button_text:
            line += f" - {resolution.button_text!r}"
        typer.echo(line)

    queued = sum(len(r.queued_for_review) for r in report.cleanup)
    typer.echo(f"Cookies deleted: {len(report.deleted)}")
    for name in report.deleted:
        typer.echo(f"  - {name}")
    if queued:
        typer.echo(f"Queued for review: {queued}")


@app.command()
def visit(
    url: Annotated[str, typer.Argument(help="URL of the page to visit")],

    headless: Annotated[
        bool,
        typer.Option("--headless/--headed", help="Run the browser without a window")
    ] = True,

    config_dir: Annotated[
        Optional[Path],
        typer.Option("--config-dir", help="Directory containing consentkeeper.yaml")
    ] = None,

    env: Annotated[
        Optional[str],
        typer.Option("--env", "-e", help="Configuration environment")
    ] = None,

    state_file: Annotated[
        Optional[Path],
        typer.Option("--state-file", help="JSON file holding preferences, review queue and activity")
    ] = None,

    timeout: Annotated[
        float,
        typer.Option("--timeout", help="Page load timeout in seconds")
    ] = 30.0,
):
    """Visit a page, resolve its consent prompt and clean up its cookies."""
    config = _load_config(config_dir, env)
    state = JsonStateStore(state_file or config.storage.state_path)

    try:
        report = asyncio.run(_visit(url, config, state, headless, timeout))
    except KeyboardInterrupt:
        typer.echo("Interrupted", err=True)
        raise typer.Exit(code=1)
    except ConsentKeeperError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    _print_report(report)


@app.command()
def classify(
    name: Annotated[str, typer.Argument(help="Cookie name")],

    domain: Annotated[
        str,
        typer.Option("--domain", "-d", help="Cookie domain")
    ] = "",

    value: Annotated[
        Optional[str],
        typer.Option("--value", help="Cookie value")
    ] = None,

    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the result as JSON")
    ] = False,
):
    """Classify a cookie with the local classifier."""
    result = classify_cookie(name, domain, value)
    if as_json:
        typer.echo(json.dumps(result.model_dump(mode='json'), indent=2))
        return

    typer.echo(f"{name}: {result.category.value}")
    typer.echo(f"  source:     {result.source.value}")
    typer.echo(f"  confidence: {result.confidence:.2f} ({result.level.value})")
    if result.reasoning:
        typer.echo(f"  reasoning:  {result.reasoning}")


@review_app.command(name="list")
def review_list(
    state_file: Annotated[
        Optional[Path],
        typer.Option("--state-file", help="JSON state file")
    ] = None,

    config_dir: Annotated[
        Optional[Path],
        typer.Option("--config-dir", help="Directory containing consentkeeper.yaml")
    ] = None,

    include_decided: Annotated[
        bool,
        typer.Option("--all", help="Include decided items")
    ] = False,
):
    """List cookies waiting for a review decision."""
    queue = ReviewQueue(_state_store(_load_config(config_dir, None), state_file))
    items = asyncio.run(queue.all_items() if include_decided else queue.pending())

    if not items:
        typer.echo("Review queue is empty")
        return

    for item in items:
        typer.echo(
            f"{item.id}  {item.cookie_name} ({item.domain})  {item.category.value} "
            f"{item.confidence:.2f}  [{item.status.value}]"
        )
        if item.reasoning:
            typer.echo(f"    {item.reasoning}")


@review_app.command(name="decide")
def review_decide(
    item_id: Annotated[str, typer.Argument(help="Review item id")],

    decision: Annotated[str, typer.Argument(help="delete or keep")],

    state_file: Annotated[
        Optional[Path],
        typer.Option("--state-file", help="JSON state file")
    ] = None,

    config_dir: Annotated[
        Optional[Path],
        typer.Option("--config-dir", help="Directory containing consentkeeper.yaml")
    ] = None,
):
    """Record a delete/keep decision for a queued cookie.

    Deletion of the cookie itself happens through the background service of a
    running browser session; this command records the decision.
    """
    try:
        status = ReviewStatus(decision.lower())
    except ValueError:
        typer.echo(f"Invalid decision {decision!r}; use delete or keep", err=True)
        raise typer.Exit(code=2)
    if status == ReviewStatus.PENDING:
        typer.echo("Decision must be delete or keep", err=True)
        raise typer.Exit(code=2)

    queue = ReviewQueue(_state_store(_load_config(config_dir, None), state_file))
    item = asyncio.run(queue.decide(item_id, status))
    if item is None:
        typer.echo(f"No pending review item {item_id}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"{item.cookie_name} ({item.domain}): {item.status.value}")


if __name__ == "__main__":
    app()
