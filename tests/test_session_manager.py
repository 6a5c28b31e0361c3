import json

import pytest

from candidate_resolver import CandidateResolver
from fake_app import BASE, VALID_TOKEN, FakeProjectApp
from fakes import FakeClock, FakeSurface, quiet_reporter
from harness_errors import AuthenticationRequired, AuthenticationTimeout
from session_manager import SESSION_CANDIDATES, SessionManager, SessionStatus, SessionStore

S = SessionStatus


class LoginAt(FakeClock):
    """Someone finishes logging in in the browser once ``at`` seconds have passed."""

    def __init__(self, app, at):
        super().__init__()
        self.app = app
        self.at = at

    async def sleep(self, seconds):
        await super().sleep(seconds)
        if self.now >= self.at and not self.app.logged_in:
            self.app.login()


def make_manager(tmp_path, app_kwargs=None, clock=None, login_driver=None, poll_interval=1.0):
    surface = FakeSurface()
    app = FakeProjectApp(surface, **(app_kwargs or {}))
    reporter = quiet_reporter()
    resolver = CandidateResolver(surface, reporter, defaults=SESSION_CANDIDATES)
    store = SessionStore(tmp_path / "session" / "storage_state.json")
    clock = clock or FakeClock()
    manager = SessionManager(surface, resolver, store, reporter, poll_interval=poll_interval,
                             progress_interval=30.0, login_driver=login_driver, clock=clock, sleep=clock.sleep)
    return manager, app, surface, store


def save_state(store, token):
    store.save({"cookies": [{"name": "sid", "value": token}], "origins": []})


@pytest.mark.asyncio
async def test_restored_session_is_authenticated_without_waiting(tmp_path):
    manager, app, surface, store = make_manager(tmp_path, {"logged_in": False})
    save_state(store, VALID_TOKEN)
    before = store.path.read_text(encoding="utf-8")

    status = await manager.establish(BASE + "/", login_url=BASE + "/login", interactive=True)

    assert status is S.AUTHENTICATED
    assert manager.history == [S.UNKNOWN, S.CHECKING, S.AUTHENTICATED]
    assert S.AWAITING_EXTERNAL_AUTH not in manager.history
    assert manager.persist_count == 0
    assert store.path.read_text(encoding="utf-8") == before
    assert len(surface.applied_states) == 1


@pytest.mark.asyncio
async def test_external_login_after_five_seconds_persists_exactly_once(tmp_path):
    manager, app, surface, store = make_manager(tmp_path, {"logged_in": False})
    clock = LoginAt(app, at=5.0)
    manager.clock = clock
    manager.sleep = clock.sleep

    status = await manager.establish(BASE + "/", login_url=BASE + "/login", interactive=True, login_wait=600)

    assert status is S.AUTHENTICATED
    assert manager.history == [S.UNKNOWN, S.CHECKING, S.UNAUTHENTICATED, S.AWAITING_EXTERNAL_AUTH, S.AUTHENTICATED]
    assert manager.persist_count == 1
    assert 5.0 <= clock.now < 7.0
    saved = json.loads(store.path.read_text(encoding="utf-8"))
    assert saved["state"]["cookies"][0]["value"] == VALID_TOKEN
    assert saved["persistedAt"]


@pytest.mark.asyncio
async def test_login_timeout_writes_nothing(tmp_path):
    manager, app, surface, store = make_manager(tmp_path, {"logged_in": False})

    with pytest.raises(AuthenticationTimeout):
        await manager.establish(BASE + "/", login_url=BASE + "/login", interactive=True, login_wait=1)

    assert manager.status is S.TIMED_OUT
    assert manager.persist_count == 0
    assert not store.path.exists()
    assert surface.navigations[-1] == BASE + "/login"


@pytest.mark.asyncio
async def test_login_timeout_leaves_a_saved_session_untouched(tmp_path):
    manager, app, surface, store = make_manager(tmp_path, {"logged_in": False})
    save_state(store, "sid-expired")
    before = store.path.read_bytes()

    with pytest.raises(AuthenticationTimeout):
        await manager.establish(BASE + "/", login_url=BASE + "/login", interactive=True, login_wait=1)

    assert manager.persist_count == 0
    assert store.path.read_bytes() == before


@pytest.mark.asyncio
async def test_poll_sleeps_never_overshoot_the_deadline(tmp_path):
    clock = FakeClock()
    manager, app, surface, store = make_manager(tmp_path, {"logged_in": False}, clock=clock, poll_interval=4.0)

    status = await manager.await_external_auth(timeout=10)

    assert status is S.TIMED_OUT
    assert clock.sleeps == [4.0, 4.0, 2.0]
    assert clock.now == 10.0


@pytest.mark.asyncio
async def test_progress_is_reported_while_waiting(tmp_path):
    manager, app, surface, store = make_manager(tmp_path, {"logged_in": False})

    await manager.await_external_auth(timeout=65)

    assert manager.reporter.diag_stream.getvalue().count("Still waiting for login") == 2


@pytest.mark.asyncio
async def test_non_interactive_without_login_driver_is_refused(tmp_path):
    manager, app, surface, store = make_manager(tmp_path, {"logged_in": False})

    with pytest.raises(AuthenticationRequired):
        await manager.establish(BASE + "/", login_url=BASE + "/login", interactive=False)

    assert not store.path.exists()
    assert S.AWAITING_EXTERNAL_AUTH not in manager.history


@pytest.mark.asyncio
async def test_stale_session_falls_back_to_login_driver(tmp_path):
    async def log_in(surface):
        app.login()

    manager, app, surface, store = make_manager(tmp_path, {"logged_in": False}, login_driver=log_in)
    save_state(store, "sid-expired")

    status = await manager.establish(BASE + "/", login_url=BASE + "/login", interactive=False)

    assert status is S.AUTHENTICATED
    assert manager.history == [S.UNKNOWN, S.CHECKING, S.UNAUTHENTICATED, S.AWAITING_EXTERNAL_AUTH, S.AUTHENTICATED]
    assert manager.persist_count == 1
    assert store.load().blob["cookies"][0]["value"] == VALID_TOKEN


@pytest.mark.asyncio
async def test_failing_login_driver_still_waits_for_markers(tmp_path):
    async def broken(surface):
        raise RuntimeError("form changed")

    manager, app, surface, store = make_manager(tmp_path, {"logged_in": False}, login_driver=broken)

    status = await manager.await_external_auth(timeout=3)

    assert status is S.TIMED_OUT
    assert "form changed" in manager.reporter.diag_stream.getvalue()


@pytest.mark.asyncio
async def test_fresh_authenticated_session_is_persisted(tmp_path):
    manager, app, surface, store = make_manager(tmp_path, {"logged_in": True})

    status = await manager.establish(BASE + "/")

    assert status is S.AUTHENTICATED
    assert manager.history == [S.UNKNOWN, S.CHECKING, S.AUTHENTICATED]
    assert manager.persist_count == 1
    assert store.load() is not None


def test_store_ignores_corrupt_file(tmp_path):
    store = SessionStore(tmp_path / "state.json")
    assert store.load() is None
    store.path.write_text("{broken", encoding="utf-8")
    assert store.load() is None
    store.path.write_text(json.dumps({"state": "nope"}), encoding="utf-8")
    assert store.load() is None


@pytest.mark.asyncio
async def test_unattended_login_driver_error_fails_without_waiting(tmp_path):
    async def broken(surface):
        raise RuntimeError("form changed")

    manager, app, surface, store = make_manager(tmp_path, {"logged_in": False}, login_driver=broken)

    with pytest.raises(AuthenticationRequired, match="form changed"):
        await manager.establish(BASE + "/", login_url=BASE + "/login", interactive=False, login_wait=600)

    assert manager.clock.sleeps == []
    assert manager.status is S.UNAUTHENTICATED
    assert not store.path.exists()


@pytest.mark.asyncio
async def test_unattended_login_that_stays_on_the_form_only_settles_briefly(tmp_path):
    async def wrong_password(surface):
        pass

    manager, app, surface, store = make_manager(tmp_path, {"logged_in": False}, login_driver=wrong_password)

    with pytest.raises(AuthenticationRequired):
        await manager.establish(BASE + "/", login_url=BASE + "/login", interactive=False, login_wait=600)

    assert sum(manager.clock.sleeps) == manager.settle_wait
    assert manager.persist_count == 0
    assert not store.path.exists()
