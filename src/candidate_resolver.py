import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from harness_errors import NotFound
from surface import ENGINES, describe_query


# logical property -> labels it may carry on screen (English/Japanese, renamed variants)
LABEL_SYNONYMS = {
    "name": ["Name", "名前", "プロジェクト名", "Project name", "Title", "タイトル"],
    "key": ["Key", "キー", "主キー", "Primary key", "ID"],
    "description": ["Description", "説明", "概要"],
    "email": ["Email", "E-mail", "メールアドレス"],
    "password": ["Password", "パスワード"],
}


@dataclass
class InteractionTarget:
    """One element resolved for a logical control. Never cached; resolve again on retry."""

    element: Any
    query: dict
    position: int
    what: str = ""

    def describe(self) -> str:
        return f"{self.what or 'target'} via #{self.position + 1} {describe_query(self.query)}"


def load_overrides(path: Path, reporter=None) -> dict[str, list[dict]]:
    """Read the user-editable slug -> [query, ...] file. Bad entries are reported and skipped."""
    if not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        if reporter:
            reporter.diag(f"⚠️ Ignoring selector overrides {path}: {e}")
        return {}
    if not isinstance(raw, dict):
        if reporter:
            reporter.diag(f"⚠️ Ignoring selector overrides {path}: top level must be an object")
        return {}
    overrides = {}
    for slug, queries in raw.items():
        if not isinstance(queries, list):
            queries = [queries]
        valid = [q for q in queries if isinstance(q, dict) and q.get("engine") in ENGINES]
        if reporter and len(valid) != len(queries):
            reporter.diag(f"⚠️ Skipped {len(queries) - len(valid)} malformed override(s) for '{slug}'")
        if valid:
            overrides[slug] = valid
    return overrides


def field_candidates(prop: str, synonyms: dict[str, list[str]] | None = None) -> list[dict]:
    labels = (synonyms or LABEL_SYNONYMS).get(prop, [])
    cands = []
    for label in labels:
        cands.append({"engine": "label", "value": label, "exact": True})
    for label in labels:
        cands.append({"engine": "placeholder", "value": label})
    cands.append({"engine": "css", "value": f"input[name='{prop}'], textarea[name='{prop}'], select[name='{prop}']"})
    return cands


class CandidateResolver:
    """Resolve logical controls against an ordered list of alternative queries.

    Order encodes preference: the first query with at least one match wins and
    its first match in document order is returned. Absence is a normal outcome
    (``None``); use :meth:`require` where absence should raise.
    """

    def __init__(self, surface, reporter, defaults: dict | None = None, overrides: dict | None = None,
                 synonyms: dict | None = None):
        self.surface = surface
        self.reporter = reporter
        self.defaults = defaults or {}
        self.overrides = overrides or {}
        self.synonyms = synonyms or LABEL_SYNONYMS

    def candidates(self, slug: str) -> list[dict]:
        # user overrides are tried first
        cands = list(self.overrides.get(slug, [])) + list(self.defaults.get(slug, []))
        if cands or ":" in slug:
            return cands
        # Unknown plain slug: fall back to its humanized name
        human = humanize(slug)
        if not human:
            return []
        for role in ("menuitem", "link", "button"):
            cands.append({"engine": "role", "role": role, "name_regex": re.escape(human)})
        cands.append({"engine": "text", "text": human})
        return cands

    async def resolve(self, candidates, scope=None, timeout_ms: int = 0, what: str = "") -> InteractionTarget | None:
        if isinstance(candidates, str):
            what = what or candidates
            candidates = self.candidates(candidates)
        for position, query in enumerate(candidates):
            try:
                matches = await self.surface.query(query, scope=scope, timeout_ms=timeout_ms)
            except Exception as e:
                self.reporter.debug(f"→ {what or 'query'}: {describe_query(query)} errored: {e}")
                continue
            if matches:
                target = InteractionTarget(element=matches[0], query=query, position=position, what=what)
                self.reporter.debug(f"✓ Resolved {target.describe()}")
                return target
        self.reporter.debug(f"✖ {what or 'target'}: none of {len(candidates)} candidate queries matched")
        return None

    async def require(self, candidates, scope=None, timeout_ms: int = 0, what: str = "") -> InteractionTarget:
        if isinstance(candidates, str):
            what = what or candidates
            candidates = self.candidates(candidates)
        target = await self.resolve(candidates, scope=scope, timeout_ms=timeout_ms, what=what)
        if target is None:
            raise NotFound(what or "target", tried=len(candidates))
        return target

    async def resolve_field(self, prop: str, scope=None, timeout_ms: int = 0) -> InteractionTarget | None:
        """Find an input by its logical property name. ``None`` means not applicable here."""
        cands = self.candidates(f"field:{prop}") + field_candidates(prop, self.synonyms)
        return await self.resolve(cands, scope=scope, timeout_ms=timeout_ms, what=f"field '{prop}'")

    async def count_exact(self, text: str, scope=None, timeout_ms: int = 0) -> int:
        """Number of elements whose whole text is exactly ``text``.

        Used for fixture existence checks: substring matches would let one
        fixture name match another that shares its prefix.
        """
        query = {"engine": "text", "text": text, "exact": True}
        matches = await self.surface.query(query, scope=scope, timeout_ms=timeout_ms)
        exact = 0
        for el in matches:
            try:
                if (await el.text()) == text:
                    exact += 1
            except Exception:
                continue
        return exact


def humanize(slug: str) -> str:
    s = re.sub(r"[-_:]+", " ", slug)
    s = re.sub(r"([a-z])([A-Z])", r"\1 \2", s)
    return s.strip()
