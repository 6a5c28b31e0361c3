import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from harness_errors import ConfigError


# Optional scenarios and whether a failure inside them fails the run by default
SCENARIO_DEFAULTS = {
    "project": {"enabled": True, "strict": True},
    "page_editor": {"enabled": False, "strict": False},
    "locale_check": {"enabled": False, "strict": False},
}

CREDENTIAL_ENV = {
    "username": "HARNESS_USERNAME",
    "password": "HARNESS_PASSWORD",
    "totp_secret": "HARNESS_TOTP_SECRET",
}


@dataclass
class ScenarioToggle:
    enabled: bool
    strict: bool


@dataclass
class Credentials:
    username: str
    password: str
    totp_secret: str | None = None


@dataclass
class HarnessConfig:
    base_url: str
    login_path: str = "/login"
    login_wait: float = 600.0
    headless: bool = True
    interactive: bool = False
    checklist: bool = False
    verbose: bool = False
    session_file: Path = Path("data/session/storage_state.json")
    runs_dir: Path = Path("data/runs")
    overrides_file: Path = Path("data/selectors_overrides.json")
    poll_interval: float = 1.0
    progress_interval: float = 30.0
    fixture_prefix: str = "ci-fixture"
    detail_url_pattern: str = r"/project\?s="
    locale_pattern: str = r"[\u4e00-\u9fff]"
    scenarios: dict[str, ScenarioToggle] = field(default_factory=dict)
    credentials: Credentials | None = None

    @property
    def login_url(self) -> str:
        if self.login_path.startswith("http"):
            return self.login_path
        return self.base_url.rstrip("/") + "/" + self.login_path.lstrip("/")

    def scenario_enabled(self, name: str) -> bool:
        toggle = self.scenarios.get(name)
        return bool(toggle and toggle.enabled)

    def scenario_strict(self, name: str) -> bool:
        toggle = self.scenarios.get(name)
        return bool(toggle and toggle.strict)

    @classmethod
    def from_flags(cls, flags: dict, environ: dict | None = None) -> "HarnessConfig":
        """Build a config from a flat ``{flag: value}`` map.

        Unknown flags are rejected so a typo never silently disables a scenario.
        Scenario switches are ``<name>`` and ``<name>_strict``.
        """
        flags = dict(flags)
        base_url = flags.pop("base_url", None)
        if not base_url or not str(base_url).startswith(("http://", "https://")):
            raise ConfigError(f"base_url must be an http(s) URL, got {base_url!r}")

        scenarios = {}
        for name, defaults in SCENARIO_DEFAULTS.items():
            enabled = flags.pop(name, None)
            strict = flags.pop(f"{name}_strict", None)
            scenarios[name] = ScenarioToggle(
                enabled=defaults["enabled"] if enabled is None else bool(enabled),
                strict=defaults["strict"] if strict is None else bool(strict),
            )

        kwargs = {}
        for key in ("login_path", "fixture_prefix", "detail_url_pattern", "locale_pattern"):
            if flags.get(key) is not None:
                kwargs[key] = str(flags.pop(key))
            else:
                flags.pop(key, None)
        for key in ("login_wait", "poll_interval", "progress_interval"):
            value = flags.pop(key, None)
            if value is None:
                continue
            try:
                kwargs[key] = float(value)
            except (TypeError, ValueError):
                raise ConfigError(f"{key} must be a number, got {value!r}")
            if kwargs[key] <= 0:
                raise ConfigError(f"{key} must be positive")
        for key in ("headless", "interactive", "checklist", "verbose"):
            value = flags.pop(key, None)
            if value is not None:
                kwargs[key] = bool(value)
        for key in ("session_file", "runs_dir", "overrides_file"):
            value = flags.pop(key, None)
            if value is not None:
                kwargs[key] = Path(value)

        if flags:
            raise ConfigError(f"unknown flags: {', '.join(sorted(flags))}")

        for key in ("detail_url_pattern", "locale_pattern"):
            if key in kwargs:
                try:
                    re.compile(kwargs[key])
                except re.error as e:
                    raise ConfigError(f"{key} is not a valid pattern: {e}")

        return cls(
            base_url=str(base_url),
            scenarios=scenarios,
            credentials=credentials_from_env(environ),
            **kwargs,
        )


def credentials_from_env(environ: dict | None = None) -> Credentials | None:
    env = os.environ if environ is None else environ
    username = env.get(CREDENTIAL_ENV["username"])
    password = env.get(CREDENTIAL_ENV["password"])
    if not username or not password:
        return None
    return Credentials(
        username=username,
        password=password,
        totp_secret=env.get(CREDENTIAL_ENV["totp_secret"]) or None,
    )


def load_env_file(path: str | Path | None = None) -> bool:
    """Load ``.env`` into the process environment without overriding what is already set."""
    if path is None:
        return load_dotenv()
    return load_dotenv(Path(path))
