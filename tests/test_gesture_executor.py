import pytest

from candidate_resolver import CandidateResolver, InteractionTarget
from fakes import E, FakeSurface, quiet_reporter
from gesture_executor import GestureExecutor
from harness_errors import NotFound, ValidationRejected


def target(el, what="target"):
    return InteractionTarget(element=el, query={"engine": "css", "value": "x"}, position=0, what=what)


def editor_page():
    source = E("div", "Text", box={"x": 10, "y": 100, "width": 100, "height": 30})
    canvas = E("div", "", E("div", "existing"), box={"x": 400, "y": 100, "width": 600, "height": 400})
    surface = FakeSurface(E("body", "", source, canvas))
    return surface, source, canvas


@pytest.mark.asyncio
async def test_fill_emits_user_like_events_in_order():
    field = E("input")
    surface = FakeSurface(E("body", "", field))
    gestures = GestureExecutor(surface, quiet_reporter())

    await gestures.fill(target(field), "ci-fixture-1")

    assert field.value == "ci-fixture-1"
    assert field.events == ["focus", "value:ci-fixture-1", "input", "change", "blur"]


@pytest.mark.asyncio
async def test_gesture_on_detached_target_raises_not_found():
    button = E("button", "Save")
    surface = FakeSurface(E("body", "", button))
    gestures = GestureExecutor(surface, quiet_reporter())
    button.remove()

    with pytest.raises(NotFound):
        await gestures.click(target(button, "save button"))
    with pytest.raises(NotFound):
        await gestures.click(None)
    assert button.events == []


@pytest.mark.asyncio
async def test_click_preferred_uses_inner_link_and_reports_navigation():
    surface = FakeSurface(location="https://app.example.test/")
    link = E("a", "Projects", on_click=lambda _: setattr(surface, "location", "https://app.example.test/projects"))
    item = E("li", "", link)
    surface.set_body(E("body", "", E("ul", "", item)))
    gestures = GestureExecutor(surface, quiet_reporter())
    resolver = CandidateResolver(surface, quiet_reporter())

    changed = await gestures.click_preferred(target(item, "listing menu"), resolver)

    assert changed is True
    assert link.events == ["click"]
    assert item.events == []


@pytest.mark.asyncio
async def test_click_preferred_falls_back_to_container():
    surface = FakeSurface(location="https://app.example.test/")
    item = E("li", "Projects")
    surface.set_body(E("body", "", E("ul", "", item)))
    gestures = GestureExecutor(surface, quiet_reporter())

    changed = await gestures.click_preferred(target(item), CandidateResolver(surface, quiet_reporter()))

    assert changed is False
    assert item.events == ["click"]


@pytest.mark.asyncio
async def test_drag_and_drop_uses_stepped_pointer_sequence():
    surface, source, canvas = editor_page()
    surface.on_drop = lambda x, y: canvas.append(E("div", "Text block"))
    gestures = GestureExecutor(surface, quiet_reporter(), drag_steps=12)

    count = await gestures.drag_and_drop(target(source, "palette item"), target(canvas, "canvas"), offset=(5, -10))

    assert count == 2
    assert surface.mouse == [
        ("move", 60.0, 115.0, 1),
        ("down",),
        ("move", 705.0, 290.0, 12),
        ("up",),
    ]


@pytest.mark.asyncio
async def test_drag_and_drop_rejected_when_child_count_does_not_grow():
    surface, source, canvas = editor_page()
    gestures = GestureExecutor(surface, quiet_reporter())

    with pytest.raises(ValidationRejected):
        await gestures.drag_and_drop(target(source), target(canvas))
    assert await canvas.child_count() == 1


@pytest.mark.asyncio
async def test_drag_and_drop_counts_children_of_explicit_container():
    surface, source, canvas = editor_page()
    inner = canvas.append(E("div", "", box={"x": 450, "y": 150, "width": 100, "height": 100}))
    surface.on_drop = lambda x, y: canvas.append(E("div", "Text block"))
    gestures = GestureExecutor(surface, quiet_reporter())

    count = await gestures.drag_and_drop(target(source), target(inner), container=target(canvas))

    assert count == 3


@pytest.mark.asyncio
async def test_drag_and_drop_needs_visible_boxes():
    surface, source, canvas = editor_page()
    source.box = None
    gestures = GestureExecutor(surface, quiet_reporter())

    with pytest.raises(NotFound):
        await gestures.drag_and_drop(target(source, "palette item"), target(canvas))
    assert surface.mouse == []
