"""Disposable, uniquely named test resources and their guarded removal.

A fixture goes generated -> created -> confirmed -> used -> deleted ->
confirmed-absent. Only a fixture this process created *and* saw exactly once
on the surface may be deleted, and only while it is still seen exactly once.
"""

import asyncio
import secrets
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass

from candidate_resolver import InteractionTarget
from harness_errors import FixtureLeak, GuardViolation, NotFound, ValidationRejected
from step_recorder import describe_error

ROW_CSS = "tr, .list-group-item, .project-row, li, .flex"


@dataclass
class EphemeralFixture:
    id: str
    name: str
    created_confirmed: bool = False
    deleted: bool = False


def generate_fixture_id(prefix: str) -> str:
    # nanosecond timestamp plus a random tail: two runs started together still differ
    return f"{prefix}-{time.time_ns()}-{secrets.token_hex(2)}"


class FormFixtureDriver:
    """Creates and deletes fixtures through a listing screen and a creation form.

    Everything app-specific lives in the resolver's candidate table under the
    ``fixture:*`` slugs; fields are found by logical name through the
    resolver's synonym table.
    """

    def __init__(self, surface, resolver, gestures, reporter, settle_ms: int = 500, timeout_ms: int = 5000):
        self.surface = surface
        self.resolver = resolver
        self.gestures = gestures
        self.reporter = reporter
        self.settle_ms = settle_ms
        self.timeout_ms = timeout_ms

    async def open_listing(self) -> None:
        entry = await self.resolver.require("fixture:listing", timeout_ms=self.timeout_ms, what="listing menu")
        await self.gestures.click_preferred(entry, self.resolver)
        await self.surface.wait_for_load_settled()

    async def _listing_scope(self):
        scope = await self.resolver.resolve("fixture:listing_scope", what="listing")
        return scope.element if scope else None

    async def open_create_form(self):
        """Open the creation form and return the element that scopes it (a dialog), if any."""
        await self.open_listing()
        await self.gestures.click(
            await self.resolver.require("fixture:create", timeout_ms=self.timeout_ms, what="create button")
        )
        await self.surface.pause(self.settle_ms)
        template = await self.resolver.resolve("fixture:template", timeout_ms=self.timeout_ms, what="blank template")
        if template is not None:
            await self.gestures.click(template)
            await self.surface.pause(self.settle_ms)
        dialog = await self.resolver.resolve("fixture:dialog", timeout_ms=self.timeout_ms, what="create dialog")
        return dialog.element if dialog else None

    async def fill_field(self, prop: str, value: str, scope=None) -> bool:
        """Fill a field by logical name; False when the form has no such field."""
        target = await self.resolver.resolve_field(prop, scope=scope, timeout_ms=self.timeout_ms)
        if target is None:
            return False
        await target.element.wait_for("visible", timeout_ms=self.timeout_ms)
        await self.gestures.fill(target, value)
        return True

    async def empty_fields(self, props, scope=None) -> list[str]:
        missing = []
        for prop in props:
            target = await self.resolver.resolve_field(prop, scope=scope)
            if target is None:
                continue
            try:
                if not (await target.element.input_value()).strip():
                    missing.append(prop)
            except Exception:
                continue
        return missing

    async def submit(self, scope=None) -> bool:
        """Click submit; True if the form went away without a validation message."""
        button = await self.resolver.require("fixture:submit", scope=scope, what="submit button")
        await self.gestures.click(button)
        await self.surface.pause(self.settle_ms)
        if await self.resolver.resolve("fixture:validation_error", scope=scope, what="validation message"):
            return False
        if scope is not None and not await scope.wait_for("hidden", timeout_ms=self.timeout_ms):
            return False
        await self.surface.wait_for_load_settled()
        return True

    async def count(self, fixture_id: str) -> int:
        await self.open_listing()
        return await self.resolver.count_exact(fixture_id, scope=await self._listing_scope(), timeout_ms=self.timeout_ms)

    async def row(self, fixture_id: str) -> InteractionTarget:
        await self.open_listing()
        label = await self.resolver.require(
            [{"engine": "text", "text": fixture_id, "exact": True}],
            scope=await self._listing_scope(), timeout_ms=self.timeout_ms, what=f"row label {fixture_id}",
        )
        row = await label.element.closest(ROW_CSS)
        if row is None:
            raise NotFound(f"row for {fixture_id}")
        return InteractionTarget(element=row, query={"engine": "css", "value": ROW_CSS}, position=0, what="fixture row")

    async def open_row_menu(self, fixture_id: str) -> None:
        row = await self.row(fixture_id)
        menu = await self.resolver.require("fixture:row_menu", scope=row.element, what="row menu")
        await self.gestures.click(menu)
        await self.surface.pause(self.settle_ms)

    async def delete(self, fixture_id: str) -> None:
        await self.open_row_menu(fixture_id)
        item = await self.resolver.require("fixture:delete_item", timeout_ms=self.timeout_ms, what="delete item")
        await self.gestures.click(item, force=True)
        await self.surface.pause(self.settle_ms)
        confirm = await self.resolver.resolve("fixture:confirm_delete", timeout_ms=self.timeout_ms, what="confirm")
        if confirm is not None:
            await self.gestures.click(confirm)
        await self.surface.wait_for_load_settled()

    async def open_detail(self, fixture_id: str, location_pattern: str) -> bool:
        await self.open_row_menu(fixture_id)
        item = await self.resolver.require("fixture:edit_item", timeout_ms=self.timeout_ms, what="edit item")
        await self.gestures.click(item, force=True)
        reached = await self.surface.wait_for_location(location_pattern, timeout_ms=10000)
        await self.surface.pause(self.settle_ms)
        return reached


class FixtureLifecycle:
    def __init__(self, driver, reporter, prefix: str = "ci-fixture", mandatory: dict | None = None,
                 id_factory=generate_fixture_id, settle_checks: int = 3, settle_seconds: float = 1.0,
                 sleep=asyncio.sleep):
        self.driver = driver
        self.reporter = reporter
        self.prefix = prefix
        # logical field -> value template; "{id}" is the fixture id
        self.mandatory = mandatory or {"name": "{id}"}
        self.id_factory = id_factory
        self.settle_checks = max(1, settle_checks)
        self.settle_seconds = settle_seconds
        self.sleep = sleep
        self.generated: list[EphemeralFixture] = []

    async def verify_exists(self, fixture_id: str) -> int:
        count = await self.driver.count(fixture_id)
        self.reporter.debug(f"→ {fixture_id}: {count} exact match(es)")
        return count

    async def _settled_count(self, fixture_id: str, done) -> int:
        count = await self.verify_exists(fixture_id)
        for _ in range(self.settle_checks - 1):
            if done(count):
                break
            await self.sleep(self.settle_seconds)
            count = await self.verify_exists(fixture_id)
        return count

    async def _fill(self, values: dict, scope) -> None:
        filled = 0
        for prop, value in values.items():
            if await self.driver.fill_field(prop, value, scope):
                filled += 1
            else:
                self.reporter.debug(f"→ Field '{prop}' not present on this form; not applicable")
        if filled == 0:
            raise NotFound(f"any of the mandatory fields {', '.join(values)}")

    async def create(self, prefix: str | None = None) -> EphemeralFixture:
        fixture_id = self.id_factory(prefix or self.prefix)
        fixture = EphemeralFixture(id=fixture_id, name=fixture_id)
        self.generated.append(fixture)
        values = {prop: template.format(id=fixture.id) for prop, template in self.mandatory.items()}

        scope = await self.driver.open_create_form()
        await self._fill(values, scope)
        if not await self.driver.submit(scope):
            missing = await self.driver.empty_fields(values, scope)
            if not missing:
                raise ValidationRejected(f"creation of {fixture.id} rejected with every mandatory field set")
            # exactly one corrective retry
            self.reporter.diag(f"⚠️ Creation rejected, refilling {', '.join(missing)} once")
            await self._fill({prop: values[prop] for prop in missing}, scope)
            if not await self.driver.submit(scope):
                raise ValidationRejected(f"creation of {fixture.id} rejected after refilling {', '.join(missing)}")

        count = await self._settled_count(fixture.id, lambda c: c >= 1)
        if count != 1:
            raise GuardViolation(f"expected exactly 1 {fixture.id} after creation, found {count}", count)
        fixture.created_confirmed = True
        self.reporter.diag(f"✓ Created fixture {fixture.id}")
        return fixture

    async def delete(self, fixture: EphemeralFixture) -> None:
        if not fixture.created_confirmed:
            raise GuardViolation(f"refusing to delete {fixture.id}: this run never confirmed creating it")
        count = await self.verify_exists(fixture.id)
        if count != 1:
            raise GuardViolation(f"refusing to delete {fixture.id}: {count} exact matches", count)
        await self.driver.delete(fixture.id)
        after = await self._settled_count(fixture.id, lambda c: c == 0)
        if after != 0:
            raise FixtureLeak(f"{fixture.id} still present after deletion ({after} matches)", after)
        fixture.deleted = True
        self.reporter.diag(f"✓ Deleted fixture {fixture.id}")

    async def cleanup(self, fixtures, recorder) -> None:
        """Delete every confirmed, not yet deleted fixture once; failures fail the run."""
        for fixture in fixtures:
            if not fixture.created_confirmed or fixture.deleted:
                continue
            try:
                await self.delete(fixture)
            except Exception as e:
                await recorder.record_fact("fixture.cleanup", False, required=True, error=describe_error(e))
            else:
                await recorder.record_fact("fixture.cleanup", True, required=True)

    @asynccontextmanager
    async def provision(self, recorder, prefix: str | None = None, strict: bool = True):
        """Create a fixture as a recorded step and remove it on the way out, however the body ends.

        Yields the fixture, or None when a non-strict creation failed.
        """
        start = len(self.generated)
        try:
            step = await recorder.record("fixture.create", lambda: self.create(prefix), strict=strict)
            yield step.value
        finally:
            await self.cleanup(self.generated[start:], recorder)
