"""Surface capability contract and its Playwright implementation.

The harness only talks to the UI through two objects:

element
    exists, text, attribute(name), click, focus, set_value, dispatch(event),
    blur, input_value, bounding_box, wait_for(state, timeout_ms),
    child_count, closest(css)

surface
    query(query, scope=None, timeout_ms=0) -> [element, ...] in document order,
    location, navigate(url), wait_for_load_settled, wait_for_location_change,
    wait_for_location, take_snapshot, main_text, pause, mouse_move/down/up,
    export_state, apply_state

Query expressions are dicts keyed by ``engine``::

    {"engine": "role", "role": "button", "name_regex": r"add\\s*page"}
    {"engine": "text", "text": "Done", "exact": True}
    {"engine": "label", "value": r"e-?mail|username", "regex": True}
    {"engine": "css", "value": "button.btn-primary", "has_text": "Done"}
    {"engine": "testid" | "label" | "placeholder" | "xpath", "value": "..."}
"""

import json
import re
from pathlib import Path

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

ENGINES = ("css", "text", "role", "testid", "label", "placeholder", "xpath")

MAIN_CONTENT_SELECTORS = "main, .main-content, .content-wrapper, .px-main-content, .container"


def describe_query(query: dict) -> str:
    engine = query.get("engine", "?")
    if engine == "role":
        desc = f"role={query.get('role')}"
        if query.get("name_regex"):
            desc += f" /{query['name_regex']}/i"
    elif engine == "text":
        desc = f"text='{query.get('text')}'"
    else:
        desc = f"{engine}={query.get('value')}"
    if query.get("has_text"):
        desc += f" has_text='{query['has_text']}'"
    return desc


def _pattern(query: dict, key: str):
    # "regex": true turns the text into a case-insensitive pattern
    if query.get("regex"):
        return re.compile(query[key], re.I)
    return query[key]


def build_locator(root, query: dict):
    """Translate one query dict into a Playwright locator under ``root`` (page, frame or locator)."""
    engine = query.get("engine")
    if engine == "css":
        loc = root.locator(query["value"])
    elif engine == "text":
        loc = root.get_by_text(_pattern(query, "text"), exact=bool(query.get("exact", False)))
    elif engine == "role":
        if query.get("name_regex"):
            loc = root.get_by_role(query["role"], name=re.compile(query["name_regex"], re.I))
        else:
            loc = root.get_by_role(query["role"])
    elif engine == "testid":
        loc = root.get_by_test_id(query["value"])
    elif engine == "label":
        loc = root.get_by_label(_pattern(query, "value"), exact=bool(query.get("exact", False)))
    elif engine == "placeholder":
        loc = root.get_by_placeholder(_pattern(query, "value"), exact=bool(query.get("exact", False)))
    elif engine == "xpath":
        loc = root.locator(f"xpath={query['value']}")
    else:
        raise ValueError(f"unknown query engine: {engine!r}")
    if query.get("has_text"):
        loc = loc.filter(has_text=query["has_text"])
    return loc


class PlaywrightElement:
    def __init__(self, page, locator):
        self.page = page
        self.locator = locator

    async def exists(self) -> bool:
        try:
            return await self.locator.count() > 0
        except Exception:
            return False

    async def text(self, timeout_ms: int = 5000) -> str:
        return (await self.locator.inner_text(timeout=timeout_ms)).strip()

    async def attribute(self, name: str, timeout_ms: int = 5000) -> str | None:
        return await self.locator.get_attribute(name, timeout=timeout_ms)

    async def click(self, timeout_ms: int = 6000, force: bool = False) -> None:
        await self.locator.click(timeout=timeout_ms, force=force)

    async def focus(self, timeout_ms: int = 5000) -> None:
        await self.locator.focus(timeout=timeout_ms)

    async def set_value(self, value: str, timeout_ms: int = 5000) -> None:
        await self.locator.fill(value, timeout=timeout_ms)

    async def dispatch(self, event: str) -> None:
        await self.locator.dispatch_event(event)

    async def blur(self, timeout_ms: int = 5000) -> None:
        await self.locator.blur(timeout=timeout_ms)

    async def input_value(self, timeout_ms: int = 5000) -> str:
        return await self.locator.input_value(timeout=timeout_ms)

    async def bounding_box(self) -> dict | None:
        return await self.locator.bounding_box()

    async def wait_for(self, state: str = "visible", timeout_ms: int = 5000) -> bool:
        try:
            await self.locator.wait_for(state=state, timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            return False

    async def child_count(self) -> int:
        return await self.locator.evaluate("el => el.children.length")

    async def closest(self, css: str):
        # ancestors come back in document order, so the nearest match is the last one
        container = self.locator.locator("xpath=ancestor::*").and_(self.page.locator(css)).last
        if await container.count() == 0:
            return None
        return PlaywrightElement(self.page, container)


class PlaywrightSurface:
    def __init__(self, page, context):
        self.page = page
        self.context = context

    async def query(self, query: dict, scope: PlaywrightElement | None = None, timeout_ms: int = 0) -> list:
        if scope is not None:
            roots = [scope.locator]
        else:
            # main frame first, then child frames
            roots = [self.page.main_frame] + [fr for fr in self.page.frames if fr != self.page.main_frame]
        for i, root in enumerate(roots):
            loc = build_locator(root, query)
            if timeout_ms and i == 0:
                try:
                    await loc.first.wait_for(state="attached", timeout=timeout_ms)
                except PlaywrightTimeoutError:
                    pass
            try:
                count = await loc.count()
            except Exception:
                continue
            if count:
                return [PlaywrightElement(self.page, loc.nth(n)) for n in range(count)]
        return []

    @property
    def location(self) -> str:
        return self.page.url

    async def navigate(self, url: str, timeout_ms: int = 30000) -> None:
        await self.page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)

    async def wait_for_load_settled(self, timeout_ms: int = 15000) -> bool:
        try:
            await self.page.wait_for_load_state("networkidle", timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            return False

    async def wait_for_location_change(self, old: str, timeout_ms: int = 5000) -> bool:
        try:
            await self.page.wait_for_function(
                "old => window.location.href !== old", arg=old, timeout=timeout_ms
            )
            return True
        except PlaywrightTimeoutError:
            return False

    async def wait_for_location(self, pattern: str, timeout_ms: int = 10000) -> bool:
        try:
            await self.page.wait_for_url(re.compile(pattern), timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            return False

    async def main_text(self, selectors: str = MAIN_CONTENT_SELECTORS, timeout_ms: int = 5000) -> str:
        try:
            return await self.page.locator(selectors).first.inner_text(timeout=timeout_ms)
        except PlaywrightTimeoutError:
            return ""

    async def pause(self, ms: int) -> None:
        await self.page.wait_for_timeout(ms)

    async def mouse_move(self, x: float, y: float, steps: int = 1) -> None:
        await self.page.mouse.move(x, y, steps=steps)

    async def mouse_down(self) -> None:
        await self.page.mouse.down()

    async def mouse_up(self) -> None:
        await self.page.mouse.up()

    async def take_snapshot(self, stem: Path) -> list[Path]:
        """Write ``<stem>.png`` and ``<stem>.html``; returns what was actually written."""
        stem.parent.mkdir(parents=True, exist_ok=True)
        written = []
        png = stem.with_suffix(".png")
        await self.page.screenshot(path=str(png), full_page=True)
        written.append(png)
        html = stem.with_suffix(".html")
        html.write_text(await self.page.content(), encoding="utf-8")
        written.append(html)
        return written

    async def export_state(self) -> dict:
        return await self.context.storage_state()

    async def apply_state(self, state: dict) -> None:
        cookies = state.get("cookies") or []
        if cookies:
            await self.context.add_cookies(cookies)
        for origin in state.get("origins") or []:
            items = {e["name"]: e["value"] for e in origin.get("localStorage", [])}
            if not items:
                continue
            script = (
                "(() => { if (window.location.origin !== %s) return;"
                " const items = %s;"
                " for (const [k, v] of Object.entries(items)) window.localStorage.setItem(k, v); })()"
                % (json.dumps(origin.get("origin", "")), json.dumps(items))
            )
            await self.context.add_init_script(script=script)
