import asyncio
import re
import time
import urllib.parse
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

from playwright.async_api import async_playwright

from candidate_resolver import CandidateResolver, load_overrides
from credential_login import LOGIN_CANDIDATES, CredentialLogin
from fixture_lifecycle import FixtureLifecycle, FormFixtureDriver
from gesture_executor import GestureExecutor
from harness_errors import ScenarioAborted
from scenarios import APP_CANDIDATES, SCENARIOS, ScenarioContext
from session_manager import SESSION_CANDIDATES, SessionManager, SessionStore
from step_recorder import Outcome, StepRecorder, run_scope
from surface import PlaywrightSurface


def default_candidates() -> dict:
    return {**SESSION_CANDIDATES, **LOGIN_CANDIDATES, **APP_CANDIDATES}


def sanitize_for_filename(text: str) -> str:
    text = re.sub(r"[^\w\s.-]", "", text)
    text = re.sub(r"[-\s.]+", "_", text)
    return text.strip("_").lower()[:100]


def host_allowed(url: str, base_host: str) -> bool:
    try:
        host = urllib.parse.urlparse(url).hostname or ""
    except ValueError:
        return True
    if not host or host in ("about", "blank"):
        return True
    return host == base_host or host.endswith("." + base_host)


class PopupCloser:
    """Popup listener for unattended runs: closes popups that leave the app."""

    def __init__(self, base_host: str, reporter):
        self.base_host = base_host
        self.reporter = reporter
        self.tasks = set()

    def __call__(self, popup_page):
        task = asyncio.create_task(self.close_if_foreign(popup_page))
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    async def close_if_foreign(self, popup_page) -> bool:
        try:
            await popup_page.wait_for_load_state("domcontentloaded", timeout=5000)
        except Exception:
            pass
        if host_allowed(popup_page.url, self.base_host):
            return False
        self.reporter.diag(f"⛔ Closing popup: {popup_page.url}")
        try:
            await popup_page.close()
        except Exception as e:
            self.reporter.debug(f"⚠️ Could not close popup: {e}")
            return False
        return True


@asynccontextmanager
async def open_surface(config, reporter):
    """Launch Chromium and yield a PlaywrightSurface; the browser is closed on the way out."""
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=config.headless)
        try:
            context = await browser.new_context(viewport={"width": 1366, "height": 900})
            page = await context.new_page()
            base_host = urllib.parse.urlparse(config.base_url).hostname or ""

            if not config.interactive:
                page.on("popup", PopupCloser(base_host, reporter))

            yield PlaywrightSurface(page, context)
        finally:
            await browser.close()


async def reach_base(surface, session, base_url: str) -> bool:
    await surface.navigate(base_url)
    await surface.wait_for_load_settled()
    await session.dismiss_dialogs()
    return await session.has_shell_markers()


async def execute(config, surface, run, reporter, clock=time.monotonic, sleep=asyncio.sleep) -> None:
    """Authenticate, reach the base surface, then run every enabled scenario."""
    snapshots_dir = run.artifacts_dir / "snapshots"

    async def snapshot(label: str):
        return await surface.take_snapshot(snapshots_dir / sanitize_for_filename(label))

    root = StepRecorder(run, reporter, snapshot=snapshot)
    resolver = CandidateResolver(
        surface, reporter,
        defaults=default_candidates(),
        overrides=load_overrides(config.overrides_file, reporter),
    )
    gestures = GestureExecutor(surface, reporter)
    login_driver = None
    if config.credentials is not None:
        login_driver = CredentialLogin(resolver, gestures, config.credentials, reporter, sleep=sleep)
    session = SessionManager(
        surface, resolver, SessionStore(config.session_file), reporter,
        poll_interval=config.poll_interval,
        progress_interval=config.progress_interval,
        login_driver=login_driver,
        clock=clock,
        sleep=sleep,
    )

    try:
        await root.record(
            "session.authenticate",
            lambda: session.establish(
                config.base_url, login_url=config.login_url,
                interactive=config.interactive, login_wait=config.login_wait,
            ),
            required=True,
            describe=lambda status: status.value,
        )
        await root.record(
            "base.reach", lambda: reach_base(surface, session, config.base_url), required=True,
            describe=lambda _: surface.location,
        )
    except ScenarioAborted as e:
        reporter.diag(f"✖ Cannot continue: {e}")
        return
    await root.take_snapshot("milestone_base")

    driver = FormFixtureDriver(surface, resolver, gestures, reporter)
    fixtures = FixtureLifecycle(driver, reporter, prefix=config.fixture_prefix, sleep=sleep)
    ctx = ScenarioContext(
        config=config, surface=surface, resolver=resolver, gestures=gestures,
        driver=driver, fixtures=fixtures, reporter=reporter,
    )

    if config.scenario_enabled("page_editor") and not config.scenario_enabled("project"):
        await root.record_fact(
            "page_editor.prerequisite", False, strict=config.scenario_strict("page_editor"),
            note="page editor runs inside the project scenario, which is disabled",
        )

    for name, scenario in SCENARIOS.items():
        if not config.scenario_enabled(name):
            continue
        reporter.diag(f"\n===== Scenario: {name} =====")
        try:
            await session.dismiss_dialogs()
        except Exception as e:
            reporter.debug(f"⚠️ Dialog check failed: {e}")
        try:
            await scenario(ctx, root.scoped(name), root)
        except ScenarioAborted as e:
            reporter.diag(f"✖ Scenario {name} aborted: {e}")
        await root.take_snapshot(f"milestone_{name}")


def summarize(run) -> str:
    failed = sum(1 for s in run.steps if s.outcome is Outcome.FAIL)
    warned = sum(1 for s in run.steps if s.outcome is Outcome.WARN)
    return f"{len(run.steps)} steps, {failed} failed, {warned} warnings"


def new_run_dir(runs_dir: Path) -> tuple[str, Path]:
    run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir = runs_dir / f"run_{run_id}"
    n = 1
    while run_dir.exists():
        n += 1
        run_dir = runs_dir / f"run_{run_id}_{n}"
    run_dir.mkdir(parents=True, exist_ok=True)
    return run_dir.name.removeprefix("run_"), run_dir


async def run_harness(config, reporter, surface_opener=open_surface, clock=time.monotonic, sleep=asyncio.sleep):
    """One full run. The summary and checklist copy are written however it ends."""
    run_id, run_dir = new_run_dir(config.runs_dir)
    reporter.diag(f"🏃 Run {run_id} against {config.base_url}")
    try:
        async with run_scope(run_id, config.base_url, run_dir, reporter) as run:
            async with surface_opener(config, reporter) as surface:
                await execute(config, surface, run, reporter, clock=clock, sleep=sleep)
        reporter.result("harness.run", run.ok, summarize(run))
    finally:
        try:
            reporter.write_tsv(run_dir / "checklist.tsv")
        except OSError as e:
            reporter.diag(f"⚠️ Could not write checklist copy: {e}")
    return run
