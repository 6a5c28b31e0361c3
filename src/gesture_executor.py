from harness_errors import NotFound, ValidationRejected


class GestureExecutor:
    """Pointer and keyboard gestures against resolved targets.

    Every gesture re-checks that its target still exists before acting; an
    element resolved a moment ago may have been re-rendered away since.
    """

    def __init__(self, surface, reporter, settle_ms: int = 300, drag_steps: int = 12):
        self.surface = surface
        self.reporter = reporter
        self.settle_ms = settle_ms
        self.drag_steps = max(2, drag_steps)

    async def _confirm(self, target, role: str = "target"):
        if target is None:
            raise NotFound(role)
        if not await target.element.exists():
            raise NotFound(target.what or role)
        return target.element

    async def click(self, target, timeout_ms: int = 6000, force: bool = False) -> None:
        el = await self._confirm(target)
        await el.click(timeout_ms=timeout_ms, force=force)
        self.reporter.debug(f"→ Clicked {target.describe()}")

    async def click_preferred(self, target, resolver, wait_location_ms: int = 5000) -> bool:
        """Click a container's inner link, else its inner button, else the container itself.

        Waits (bounded) for the location to change afterwards and returns
        whether it did. Menu entries often only navigate from their anchor.
        """
        await self._confirm(target)
        inner = await resolver.resolve(
            [{"engine": "css", "value": ":scope > a"}, {"engine": "css", "value": ":scope > button"},
             {"engine": "css", "value": "a"}, {"engine": "css", "value": "button"}],
            scope=target.element, what=f"{target.what} control",
        )
        before = self.surface.location
        await self.click(inner or target)
        changed = await self.surface.wait_for_location_change(before, timeout_ms=wait_location_ms)
        await self.surface.pause(self.settle_ms)
        return changed

    async def fill(self, target, value: str) -> None:
        """Enter ``value`` the way a user would so reactive validation sees the same events."""
        el = await self._confirm(target)
        await el.focus()
        await el.set_value(value)
        await el.dispatch("input")
        await el.dispatch("change")
        await el.blur()
        self.reporter.debug(f"→ Filled {target.describe()}")

    async def drag_and_drop(self, source, destination, offset: tuple[float, float] = (0, 0), container=None) -> int:
        """Drag ``source`` onto ``destination`` with a stepped pointer sequence.

        Success is judged by the child count of ``container`` (default: the
        destination) going up, since drop handlers may silently reject. Returns
        the new child count.
        """
        src = await self._confirm(source, "drag source")
        dst = await self._confirm(destination, "drop target")
        box_el = await self._confirm(container, "drop container") if container is not None else dst

        before = await box_el.child_count()
        sbox = await src.bounding_box()
        dbox = await dst.bounding_box()
        if not sbox:
            raise NotFound(f"{source.what or 'drag source'} (not visible)")
        if not dbox:
            raise NotFound(f"{destination.what or 'drop target'} (not visible)")

        sx = sbox["x"] + sbox["width"] / 2
        sy = sbox["y"] + sbox["height"] / 2
        dx = dbox["x"] + dbox["width"] / 2 + offset[0]
        dy = dbox["y"] + dbox["height"] / 2 + offset[1]

        await self.surface.mouse_move(sx, sy)
        await self.surface.mouse_down()
        await self.surface.pause(self.settle_ms)
        # intermediate frames so hover detection on the drop target fires
        await self.surface.mouse_move(dx, dy, steps=self.drag_steps)
        await self.surface.pause(self.settle_ms)
        await self.surface.mouse_up()
        await self.surface.pause(self.settle_ms)

        after = await box_el.child_count()
        if after <= before:
            raise ValidationRejected(
                f"drop of {source.what or 'source'} was rejected: children stayed at {before} -> {after}"
            )
        self.reporter.debug(f"✓ Dropped {source.what or 'source'} ({before} -> {after} children)")
        return after
