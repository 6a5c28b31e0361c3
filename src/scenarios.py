"""Scenarios run against the app and the candidate table they resolve controls with.

Labels are the app's own (Japanese) first, then English and structural
alternates. ``data/selectors_overrides.json`` can put extra queries in front
of any slug without touching this file.
"""

import re
from dataclasses import dataclass

from harness_errors import ScenarioAborted

APP_CANDIDATES = {
    "fixture:listing": [
        {"engine": "css", "value": ".px-nav-content .px-nav-item", "has_text": "プロジェクト"},
        {"engine": "xpath", "value": "//li[contains(., 'プロジェクト')]"},
        {"engine": "role", "role": "link", "name_regex": r"^(projects?|プロジェクト)$"},
    ],
    "fixture:listing_scope": [
        {"engine": "css", "value": ".px-content, .content-wrapper, main"},
    ],
    "fixture:create": [
        {"engine": "css", "value": "button.btn-info.pull-right", "has_text": "新しいプロジェクトを作成"},
        {"engine": "role", "role": "button", "name_regex": r"新しいプロジェクトを作成|new\s*project|create\s*project"},
    ],
    "fixture:template": [
        {"engine": "css", "value": "div.panel-body .font-size-14.font-weight-bold"},
        {"engine": "text", "text": "Blank project"},
    ],
    "fixture:dialog": [
        {"engine": "css", "value": ".modal-content"},
        {"engine": "role", "role": "dialog"},
        {"engine": "css", "value": ".modal-dialog, .modal"},
    ],
    # the project name input carries no label; its position is the stable part
    "field:name": [
        {"engine": "css", "value": "div > input.form-control"},
    ],
    "fixture:submit": [
        {"engine": "css", "value": "button.btn-primary", "has_text": "完了"},
        {"engine": "role", "role": "button", "name_regex": r"^(完了|done|create|作成|save|保存)$"},
    ],
    "fixture:validation_error": [
        {"engine": "css", "value": ".has-error .help-block, .invalid-feedback, .error-message, [role=alert]"},
    ],
    "fixture:row_menu": [
        {"engine": "css", "value": "button[aria-label='more']"},
        {"engine": "css", "value": ".fa-ellipsis-h, .fa-ellipsis-v"},
        {"engine": "css", "value": ".dropdown-toggle"},
        {"engine": "css", "value": "button"},
    ],
    "fixture:edit_item": [
        {"engine": "css", "value": "li.item a", "has_text": "編集"},
        {"engine": "role", "role": "menuitem", "name_regex": r"^(編集|edit)$"},
        {"engine": "role", "role": "link", "name_regex": r"^(編集|edit)$"},
    ],
    "fixture:delete_item": [
        {"engine": "css", "value": "li.item a", "has_text": "削除"},
        {"engine": "role", "role": "menuitem", "name_regex": r"^(削除|delete|remove)$"},
        {"engine": "role", "role": "link", "name_regex": r"^(削除|delete|remove)$"},
    ],
    "fixture:confirm_delete": [
        {"engine": "css", "value": ".modal-content button.btn-danger"},
        {"engine": "role", "role": "button", "name_regex": r"^(削除|delete|ok|はい|yes|confirm)$"},
    ],
    "detail:title": [
        {"engine": "css", "value": "h1"},
        {"engine": "css", "value": ".modal-title, .panel-title"},
    ],
    "editor:add_page": [
        {"engine": "testid", "value": "add-page"},
        {"engine": "role", "role": "button", "name_regex": r"ページを追加|ページ追加|add\s*page|new\s*page"},
        {"engine": "css", "value": "button:has(.fa-plus)"},
    ],
    "editor:canvas": [
        {"engine": "testid", "value": "page-canvas"},
        {"engine": "css", "value": ".page-canvas, .canvas, .drop-zone, [data-droppable]"},
    ],
    "editor:palette_item": [
        {"engine": "css", "value": ".component-palette [draggable=true]"},
        {"engine": "css", "value": ".palette [draggable=true], [draggable=true]"},
    ],
}


@dataclass
class ScenarioContext:
    config: object
    surface: object
    resolver: object
    gestures: object
    driver: object
    fixtures: object
    reporter: object


def find_unexpected_script(text: str, pattern: str, sample: int = 10) -> list[str]:
    """Distinct characters of ``text`` matching ``pattern``, in order of appearance."""
    seen = []
    for m in re.finditer(pattern, text or ""):
        if m.group(0) not in seen:
            seen.append(m.group(0))
            if len(seen) >= sample:
                break
    return seen


async def check_locale(ctx: ScenarioContext, rec, name: str, strict: bool):
    async def scan():
        text = await ctx.surface.main_text()
        found = find_unexpected_script(text, ctx.config.locale_pattern)
        if found:
            raise AssertionError(f"unexpected script on {ctx.surface.location}: {''.join(found)}")
        return ctx.surface.location

    return await rec.record(name, scan, strict=strict, describe=lambda loc: f"clean: {loc}")


async def run_locale_check(ctx: ScenarioContext, rec, root) -> None:
    strict = ctx.config.scenario_strict("locale_check")
    await rec.record("navigate", lambda: ctx.surface.navigate(ctx.config.base_url), strict=strict)
    await ctx.surface.wait_for_load_settled()
    await check_locale(ctx, rec, "base", strict)


async def run_page_editor(ctx: ScenarioContext, rec) -> None:
    strict = ctx.config.scenario_strict("page_editor")

    async def add_page():
        canvas_before = await ctx.resolver.resolve("editor:canvas", what="page canvas")
        await ctx.gestures.click(await ctx.resolver.require("editor:add_page", timeout_ms=5000, what="add page"))
        await ctx.surface.wait_for_load_settled()
        await ctx.resolver.require("editor:canvas", timeout_ms=5000, what="page canvas")
        return "canvas appeared" if canvas_before is None else "canvas present"

    async def drag_component():
        source = await ctx.resolver.require("editor:palette_item", timeout_ms=5000, what="palette component")
        canvas = await ctx.resolver.require("editor:canvas", timeout_ms=5000, what="page canvas")
        return await ctx.gestures.drag_and_drop(source, canvas)

    await rec.record("add_page", add_page, strict=strict, describe=str)
    await rec.record("drag_component", drag_component, strict=strict,
                     describe=lambda n: f"canvas has {n} children")


async def run_project(ctx: ScenarioContext, rec, root) -> None:
    """Create a throwaway project, open its detail screen, optionally edit it, then delete it.

    ``root`` is the unscoped recorder, used to give the nested page editor
    and locale checks their own checklist keys.
    """
    strict = ctx.config.scenario_strict("project")
    async with ctx.fixtures.provision(rec, strict=strict) as fixture:
        if fixture is None:
            return

        async def open_detail():
            return await ctx.driver.open_detail(fixture.id, ctx.config.detail_url_pattern)

        async def read_title():
            title = await ctx.resolver.require("detail:title", timeout_ms=5000, what="detail title")
            return await title.element.text()

        await rec.record("detail.open", open_detail, strict=strict,
                         describe=lambda _: "detail screen reached")
        await rec.record("detail.title", read_title, describe=lambda t: f"title: {t}")

        if ctx.config.scenario_enabled("locale_check"):
            await guarded(check_locale(ctx, root.scoped("locale_check"), "detail",
                                       ctx.config.scenario_strict("locale_check")))
        if ctx.config.scenario_enabled("page_editor"):
            await guarded(run_page_editor(ctx, root.scoped("page_editor")))


async def guarded(coro) -> bool:
    """Run a nested scenario whose strict failure must not abort the enclosing one."""
    try:
        await coro
    except ScenarioAborted:
        return False
    return True


SCENARIOS = {
    "locale_check": run_locale_check,
    "project": run_project,
}
