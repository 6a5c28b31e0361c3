import asyncio
import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from harness_errors import AuthenticationRequired, AuthenticationTimeout


class SessionStatus(str, Enum):
    UNKNOWN = "UNKNOWN"
    CHECKING = "CHECKING"
    AUTHENTICATED = "AUTHENTICATED"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    AWAITING_EXTERNAL_AUTH = "AWAITING_EXTERNAL_AUTH"
    TIMED_OUT = "TIMED_OUT"


SESSION_CANDIDATES = {
    # A populated primary navigation only renders inside the authenticated shell
    "session:authenticated": [
        {"engine": "css", "value": ".px-nav-content .px-nav-item"},
        {"engine": "testid", "value": "user-menu"},
        {"engine": "css", "value": "nav li a[href]"},
        {"engine": "role", "role": "button", "name_regex": r"user|account|profile|ログアウト|logout"},
    ],
    "session:unauthenticated": [
        {"engine": "css", "value": "input[type='password']"},
        {"engine": "testid", "value": "login-button"},
        {"engine": "role", "role": "button", "name_regex": r"^(login|log\s*in|sign\s*in|ログイン)$"},
    ],
    "dialog:container": [
        {"engine": "css", "value": "[role=dialog], [aria-modal=true], .modal.show, .cookie, .consent, .cookie-banner, .cc-window"},
    ],
    "dialog:accept": [
        {"engine": "role", "role": "button", "name_regex": r"^(continue|ok|accept|i\s*agree|proceed|同意する|OK|閉じる)$"},
        {"engine": "role", "role": "link", "name_regex": r"^(continue|accept|i\s*agree)$"},
    ],
}


@dataclass
class SessionState:
    blob: dict
    persisted_at: str


class SessionStore:
    """The session persistence file. Only the Session Manager writes it."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> SessionState | None:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return None
        if not isinstance(data, dict) or not isinstance(data.get("state"), dict):
            return None
        return SessionState(blob=data["state"], persisted_at=data.get("persistedAt", ""))

    def save(self, blob: dict) -> SessionState:
        state = SessionState(blob=blob, persisted_at=datetime.now(timezone.utc).isoformat())
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(
            json.dumps({"persistedAt": state.persisted_at, "state": blob}, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        # a half-written file must never replace a good session
        tmp.replace(self.path)
        return state


class SessionManager:
    """Detects, restores and persists the authenticated state of the surface.

    States::

        UNKNOWN -> CHECKING -> AUTHENTICATED | UNAUTHENTICATED
        UNAUTHENTICATED -> AWAITING_EXTERNAL_AUTH -> AUTHENTICATED | TIMED_OUT

    The session file is written only after surface inspection has confirmed
    authentication, and never after a failed attempt.
    """

    def __init__(self, surface, resolver, store: SessionStore, reporter, poll_interval: float = 1.0,
                 progress_interval: float = 30.0, login_driver=None, settle_wait: float = 5.0,
                 clock=time.monotonic, sleep=asyncio.sleep):
        self.surface = surface
        self.resolver = resolver
        self.store = store
        self.reporter = reporter
        self.poll_interval = poll_interval
        self.progress_interval = progress_interval
        self.login_driver = login_driver
        self.settle_wait = settle_wait
        self.clock = clock
        self.sleep = sleep
        self.status = SessionStatus.UNKNOWN
        self.history = [SessionStatus.UNKNOWN]
        self.persist_count = 0

    def _transition(self, status: SessionStatus) -> None:
        if status is self.status:
            return
        self.reporter.debug(f"🔐 Session {self.status.value} -> {status.value}")
        self.status = status
        self.history.append(status)

    async def restore(self, state: SessionState) -> None:
        self._transition(SessionStatus.CHECKING)
        self.reporter.diag(f"🔐 Restoring session persisted at {state.persisted_at or 'unknown time'}")
        await self.surface.apply_state(state.blob)

    async def has_shell_markers(self) -> bool:
        # Navigation markers decide; the URL alone can be a transient redirect
        if await self.resolver.resolve("session:authenticated", what="authenticated shell"):
            return True
        return False

    async def detect(self) -> SessionStatus:
        self._transition(SessionStatus.CHECKING)
        if await self.has_shell_markers():
            self._transition(SessionStatus.AUTHENTICATED)
        else:
            login_form = await self.resolver.resolve("session:unauthenticated", what="login form")
            if login_form is None:
                self.reporter.debug("→ Neither shell nor login form visible; treating as unauthenticated")
            self._transition(SessionStatus.UNAUTHENTICATED)
        return self.status

    async def persist(self) -> SessionState:
        blob = await self.surface.export_state()
        state = self.store.save(blob)
        self.persist_count += 1
        self.reporter.diag(f"🔐 Session saved to {self.store.path}")
        return state

    async def await_external_auth(self, timeout: float, interactive: bool = True) -> SessionStatus:
        """Poll until someone authenticates out of band or ``timeout`` seconds pass.

        Without an interactive browser the login driver is the only way in: if it
        raises the wait ends with AuthenticationRequired, and if it returns the
        shell gets ``settle_wait`` seconds to appear.
        """
        self._transition(SessionStatus.AWAITING_EXTERNAL_AUTH)
        start = self.clock()
        last_progress = start
        if self.login_driver is not None:
            try:
                await self.login_driver(self.surface)
            except Exception as e:
                self.reporter.diag(f"⚠️ Automated login did not finish: {e}")
                if not interactive:
                    self._transition(SessionStatus.UNAUTHENTICATED)
                    raise AuthenticationRequired(f"automated login failed: {e}") from e
        if not interactive:
            start = last_progress = self.clock()
            timeout = min(timeout, self.settle_wait)
        self.reporter.diag(f"🔐 Waiting up to {int(timeout)}s for login to complete")
        while True:
            if await self.has_shell_markers():
                self._transition(SessionStatus.AUTHENTICATED)
                await self.persist()
                return self.status
            now = self.clock()
            elapsed = now - start
            if elapsed >= timeout:
                break
            if now - last_progress >= self.progress_interval:
                self.reporter.diag(f"⏳ Still waiting for login ({int(timeout - elapsed)}s left)")
                last_progress = now
            await self.sleep(min(self.poll_interval, timeout - elapsed))
        self._transition(SessionStatus.TIMED_OUT)
        self.reporter.diag(f"✖ Login not completed within {int(timeout)}s")
        return self.status

    async def dismiss_dialogs(self) -> bool:
        """Best-effort click on an accept/continue control inside a dialog-like container."""
        container = await self.resolver.resolve("dialog:container", what="dialog")
        if container is None:
            return False
        button = await self.resolver.resolve("dialog:accept", scope=container.element, what="dialog accept")
        if button is None:
            return False
        try:
            await button.element.click(timeout_ms=5000)
        except Exception as e:
            self.reporter.debug(f"⚠️ Could not dismiss dialog: {e}")
            return False
        self.reporter.diag(f"→ Dismissed dialog via {button.describe()}")
        await self.surface.wait_for_load_settled()
        return True

    async def establish(self, base_url: str, login_url: str | None = None, interactive: bool = False,
                        login_wait: float = 600.0) -> SessionStatus:
        """Reach AUTHENTICATED or raise.

        Tries the persisted session first. Without it (or if it is stale) waits
        for external authentication, which requires either an interactive
        browser or an automated login driver.
        """
        state = self.store.load()
        if state is not None:
            await self.restore(state)
        await self.surface.navigate(base_url)
        await self.surface.wait_for_load_settled()
        await self.dismiss_dialogs()
        status = await self.detect()
        if status is SessionStatus.AUTHENTICATED:
            if state is None:
                await self.persist()
            return status

        if not interactive and self.login_driver is None:
            raise AuthenticationRequired(
                "not authenticated and no way to log in (non-interactive, no credentials)"
            )
        if login_url and login_url != self.surface.location:
            await self.surface.navigate(login_url)
            await self.surface.wait_for_load_settled()
        status = await self.await_external_auth(login_wait, interactive=interactive)
        if status is SessionStatus.TIMED_OUT and not interactive:
            raise AuthenticationRequired("automated login did not reach the authenticated shell")
        if status is SessionStatus.TIMED_OUT:
            raise AuthenticationTimeout(f"login not completed within {int(login_wait)}s")
        return status
