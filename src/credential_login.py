import asyncio
import time

import pyotp

from harness_errors import NotFound, ValidationRejected


LOGIN_CANDIDATES = {
    "login:open": [
        {"engine": "testid", "value": "login-button"},
        {"engine": "role", "role": "button", "name_regex": r"^(login|log\s*in|sign\s*in|ログイン)$"},
        {"engine": "role", "role": "link", "name_regex": r"^(login|log\s*in|sign\s*in|ログイン)$"},
    ],
    "login:username": [
        {"engine": "label", "value": r"e-?mail|username|user\s*id|メールアドレス|ユーザー", "regex": True},
        {"engine": "css", "value": "input[type='email']"},
        {"engine": "css", "value": "#email, #username, input[name='email'], input[name='username']"},
    ],
    "login:password": [
        {"engine": "label", "value": r"password|パスワード", "regex": True},
        {"engine": "css", "value": "input[type='password']"},
    ],
    "login:submit": [
        {"engine": "role", "role": "button", "name_regex": r"^(sign\s*in|log\s*in|login|continue|submit|ログイン)$"},
        {"engine": "css", "value": "button[type='submit'], input[type='submit'], #submit"},
    ],
    "login:otp": [
        {"engine": "label", "value": r"(one[- ]?time|verification|auth|otp).*code|認証コード", "regex": True},
        {"engine": "css", "value": "#otp, input[name*='otp'], input[id*='otp'], input[autocomplete='one-time-code']"},
    ],
    "login:otp_submit": [
        {"engine": "role", "role": "button", "name_regex": r"^(submit|continue|verify|sign\s*in|送信|確認)$"},
        {"engine": "css", "value": "button[type='submit'], #submit"},
    ],
}


class CredentialLogin:
    """Drive the login form with credentials from the environment.

    Used as the Session Manager's login driver so that external
    authentication is possible without a person at the browser. Whether it
    worked is decided by the Session Manager's own detection, not here.
    """

    def __init__(self, resolver, gestures, credentials, reporter, totp_attempts: int = 2,
                 clock=time.time, sleep=asyncio.sleep):
        self.resolver = resolver
        self.gestures = gestures
        self.credentials = credentials
        self.reporter = reporter
        self.totp_attempts = totp_attempts
        self.clock = clock
        self.sleep = sleep

    async def __call__(self, surface) -> None:
        username = await self.resolver.resolve("login:username", timeout_ms=3000)
        if username is None:
            # some apps only show the form after clicking Login
            opener = await self.resolver.resolve("login:open")
            if opener is not None:
                await self.gestures.click(opener)
                await surface.wait_for_load_settled()
        username = await self.resolver.require("login:username", timeout_ms=8000, what="username field")
        await self.gestures.fill(username, self.credentials.username)
        password = await self.resolver.require("login:password", timeout_ms=5000, what="password field")
        await self.gestures.fill(password, self.credentials.password)
        await self.gestures.click(await self.resolver.require("login:submit", what="sign-in button"))
        await surface.wait_for_load_settled()
        self.reporter.diag("→ Submitted credentials")

        if self.credentials.totp_secret:
            await self.submit_totp(surface)

    def current_code(self) -> str:
        return pyotp.TOTP(self.credentials.totp_secret).at(self.clock())

    async def submit_totp(self, surface) -> None:
        """Fill the one-time code; retried once in the next TOTP window if the field stays up."""
        totp = pyotp.TOTP(self.credentials.totp_secret)
        for attempt in range(self.totp_attempts):
            field = await self.resolver.resolve("login:otp", timeout_ms=8000, what="one-time code field")
            if field is None:
                if attempt == 0:
                    raise NotFound("one-time code field")
                # the field went away after the previous submit: accepted
                return
            code = self.current_code()
            self.reporter.debug(f"→ OTP attempt {attempt + 1}")
            await self.gestures.fill(field, code)
            await self.gestures.click(await self.resolver.require("login:otp_submit", what="code submit"))
            await surface.wait_for_load_settled()
            if await self.resolver.resolve("login:otp", timeout_ms=1000) is None:
                self.reporter.diag("✓ One-time code accepted")
                return
            # a code entered at the edge of its window is rejected; wait for the next one
            remaining = totp.interval - (self.clock() % totp.interval)
            self.reporter.diag(f"⚠️ One-time code rejected, retrying in {int(remaining)}s")
            await self.sleep(remaining)
        raise ValidationRejected(f"one-time code rejected after {self.totp_attempts} attempts")
