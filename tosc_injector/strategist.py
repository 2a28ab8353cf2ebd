"""Update strategist -- quick text patch of the artifact, or full re-injection.

Re-serializing a large project dominates wall-clock time, so when a script's
previous text is still present in the written artifact it is patched in place.
That is only valid while the cached text is exactly what was last serialized;
anything else falls back to a full injection and rewrite.
"""

from __future__ import annotations

import logging
from pathlib import Path

from tosc_injector import fs
from tosc_injector.codec import cdata_body, normalize_script
from tosc_injector.injection import inject, upsert_script
from tosc_injector.models import ApplyResult, PassReport, RebuildRequirement
from tosc_injector.selectors import GLOBALS_ID, Selector, SelectorKind, resolve_selector
from tosc_injector.session import Session

logger = logging.getLogger("tosc_injector.strategist")

GLOBALS_SEPARATOR = "\n\n"


def patch_text(content: str, old_script: str, new_script: str) -> tuple[str, int]:
    """Replace every occurrence of ``old_script`` in serialized ``content``.

    Tries the text as the serializer writes it first, then the
    indentation-normalised variant.

    Returns:
        The patched content and the number of replacements (0 if not found).
    """
    replacement = cdata_body(new_script)
    for search in (cdata_body(old_script), normalize_script(old_script)):
        if not search:
            continue
        count = content.count(search)
        if count:
            return content.replace(search, replacement), count
    return content, 0


class UpdateStrategist:
    """Applies script files to a Session, choosing the cheapest valid path."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def effective_text(self, text: str) -> str:
        """Script text with the globals script prepended."""
        if self.session.globals_text:
            return self.session.globals_text + GLOBALS_SEPARATOR + text
        return text

    # ── Single script ────────────────────────────────────────────────

    async def apply_script_file(
        self,
        identifier: str,
        text: str,
        deleted: bool = False,
        *,
        quick: bool = True,
    ) -> ApplyResult:
        """Bring the document (or artifact) in line with one script file.

        Args:
            identifier: Script file name without extension.
            text: Raw script text (ignored when ``deleted``).
            deleted: The backing file no longer exists.
            quick: Allow the quick-patch path.
        """
        session = self.session
        selector = resolve_selector(identifier)
        key = selector.log_key

        if (
            selector.kind is not SelectorKind.ROOT
            and session.log.is_orphan(key)
            and identifier not in session.cache.removed
        ):
            session.log.record(key, 0)
            logger.info("%s was previously not matched to any node, skipping update", identifier)
            return ApplyResult(identifier=identifier, requirement=RebuildRequirement.NONE)

        script = "" if deleted else self.effective_text(text)

        if selector.kind is SelectorKind.ROOT:
            self._set_root_script(script)
            self._remember(identifier, key, script, 1, deleted)
            return ApplyResult(
                identifier=identifier,
                requirement=RebuildRequirement.FULL_REBUILD_NEEDED,
                count=1,
            )

        old_script = session.cache.get(identifier)
        if quick and old_script and not deleted:
            logger.debug("Found %s in cache, attempting a quick replace", identifier)
            replaced = await self.quick_patch(old_script, script)
            if replaced:
                logger.info("Quick replace updated %d instance(s) of %s", replaced, identifier)
                count = self._inject(selector, script)
                self._remember(identifier, key, script, count, deleted)
                return ApplyResult(
                    identifier=identifier,
                    requirement=RebuildRequirement.QUICK_PATCHED,
                    count=replaced,
                )
            logger.info("Quick replace failed for %s, proceeding to full rebuild", identifier)

        count = self._inject(selector, script)
        self._remember(identifier, key, script, count, deleted)
        if deleted:
            logger.info("Cleared script %s from %d node(s)", identifier, count)
        elif count == 0:
            logger.warning("%s did not match any node (%s)", identifier, key)
        return ApplyResult(
            identifier=identifier,
            requirement=RebuildRequirement.FULL_REBUILD_NEEDED,
            count=count,
        )

    async def apply_path(self, path: Path, *, quick: bool = True) -> ApplyResult | None:
        """Read a script file (a missing file is a deletion) and apply it."""
        path = Path(path)
        identifier = path.stem
        if not identifier:
            logger.warning("Could not determine script name from %s, skipping", path)
            return None

        deleted = not await fs.exists(path)
        text = ""
        if not deleted:
            try:
                text = await fs.read_text(path)
            except FileNotFoundError:
                deleted = True
        if deleted:
            logger.info("Script file deleted: %s", path.name)
        return await self.apply_script_file(identifier, text, deleted, quick=quick)

    async def apply_change(self, path: Path) -> ApplyResult | None:
        """Apply one changed script file outside a full pass.

        The working log is reset so it reports only this change, then merged
        into the snapshot so later updates see the new match count.
        """
        self.session.log.begin_update()
        try:
            return await self.apply_path(path)
        finally:
            self.session.log.commit_update()

    async def quick_patch(self, old_script: str, new_script: str) -> int:
        """Patch the written artifact in place. Returns replacements made (0 on failure)."""
        artifact = self.session.artifact_path
        try:
            content = await fs.read_text(artifact)
        except (OSError, UnicodeDecodeError) as exc:
            logger.debug("Artifact %s unreadable for quick replace: %s", artifact, exc)
            return 0

        patched, count = patch_text(content, old_script, new_script)
        if not count:
            return 0
        if patched != content:
            try:
                await fs.write_text(artifact, patched)
            except OSError as exc:
                logger.debug("Quick replace write to %s failed: %s", artifact, exc)
                return 0
        return count

    # ── Full pass ────────────────────────────────────────────────────

    async def apply_all(self) -> PassReport:
        """Re-read the globals script and re-inject every script file.

        Quick patching is disabled: a pass runs at load time and whenever the
        globals script changes, and in both cases every script's effective
        text may differ from what the artifact holds.
        """
        session = self.session
        session.log.begin_pass()
        report = PassReport()

        session.globals_text = None
        globals_path = session.script_path(GLOBALS_ID)
        if await fs.exists(globals_path):
            report.scripts_found += 1
            try:
                session.globals_text = await fs.read_text(globals_path)
            except Exception as exc:
                logger.warning("Skipping %s: %s", globals_path.name, exc)
            else:
                report.globals_found = True
                logger.debug("Globals script found")

        logger.info("Scanning %s for files to inject", session.scripts_dir)
        for path in await fs.run_blocking(self._list_scripts):
            report.scripts_found += 1
            try:
                result = await self.apply_path(path, quick=False)
            except Exception as exc:
                logger.warning("Skipping %s: %s", path.name, exc)
                continue
            if result is None:
                continue
            report.results.append(result)
            if result.needs_write:
                report.requires_rebuild = True

        session.log.end_pass()
        report.counts = dict(session.log.current)
        logger.info("%d scripts found and applied", report.scripts_found)
        return report

    def _list_scripts(self) -> list[Path]:
        scripts_dir = self.session.scripts_dir
        if not scripts_dir.is_dir():
            logger.warning("Scripts directory %s does not exist", scripts_dir)
            return []
        return sorted(
            p
            for p in scripts_dir.iterdir()
            if p.is_file() and self.session.is_script(p) and p.stem != GLOBALS_ID
        )

    # ── Document mutation ────────────────────────────────────────────

    def _set_root_script(self, script: str) -> None:
        root = self.session.document.root
        root.properties = upsert_script(root.properties, script)

    def _inject(self, selector: Selector, script: str) -> int:
        document = self.session.document
        document.root, count = inject(document.root, script, selector)
        return count

    def _remember(self, identifier: str, key: str, script: str, count: int, deleted: bool) -> None:
        if deleted:
            self.session.cache.forget(identifier)
            self.session.log.record(key, 0)
        else:
            self.session.cache.set(identifier, script)
            self.session.log.record(key, count)
