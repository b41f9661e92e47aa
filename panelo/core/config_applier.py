"""Render, validate, then atomically swap configuration into place.

The live path only ever holds the previous good file or the new good file:
rendering goes to a staging file next to it, the service's own checker runs
against the staged content, and only a passing result is renamed over the
live path before the reload signal is sent. Checkers that read a whole set
of files run against a scratch copy of the set, so nothing under the live
root changes until the check has passed.
"""
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Sequence

from panelo.core.command import Command, CommandResult, CommandRunner
from panelo.core.logger import get_logger
from panelo.core.template_loader import TemplateLoader
from panelo.models.config_template import (
    CONFIG_ROOT_TOKEN,
    STAGED_TOKEN,
    ApplyResult,
    ApplyStatus,
    ConfigSet,
    ConfigTemplate,
)

logger = get_logger(__name__)

STAGED_SUFFIX = ".panelo-staged"
SCRATCH_PREFIX = ".panelo-check-"


class ConfigApplier:
    """Single writer of live configuration paths."""

    def __init__(self, runner: CommandRunner, loader: Optional[TemplateLoader] = None):
        self.runner = runner
        self.loader = loader or TemplateLoader()

    @property
    def mock(self) -> bool:
        return self.runner.mock

    def apply(self, tmpl: ConfigTemplate) -> ApplyResult:
        """Render ``tmpl`` and apply it.

        Returns:
            ApplyResult: APPLIED, UNCHANGED (identical content already live), or
            REJECTED with the validator's output verbatim

        Raises:
            TemplateRenderError: If the template is missing or a placeholder
                has no value; nothing is written in that case
        """
        content = self.loader.render(tmpl.template, tmpl.context)
        return self.apply_content(tmpl, content)

    def apply_content(self, tmpl: ConfigTemplate, content: str) -> ApplyResult:
        """Apply already-rendered content under ``tmpl``'s validation rules."""
        live = Path(tmpl.live_path)

        if live.is_file() and live.read_text() == content:
            logger.debug(f"{live} already up to date")
            return ApplyResult(live, ApplyStatus.UNCHANGED)

        if self.mock:
            logger.info(f"MOCK: Would validate and install {live}")
            if tmpl.validator:
                self.runner.run(_bind(tmpl.validator, tmpl.config_set, _staged_path(live)))
            if tmpl.reload:
                self.runner.run(tmpl.reload)
            return ApplyResult(live, ApplyStatus.APPLIED, reloaded=tmpl.reload is not None)

        live.parent.mkdir(parents=True, exist_ok=True)
        staged = _staged_path(live)
        staged.write_text(content)
        os.chmod(staged, tmpl.mode)

        try:
            if tmpl.validator is not None:
                if tmpl.config_set is not None:
                    result = self._validate_set(tmpl.config_set, tmpl.validator, live, staged)
                else:
                    result = self.runner.run(tmpl.validator.substitute(STAGED_TOKEN, str(staged)))

                if not result.ok:
                    logger.error(f"✗ Rejected {live}: validation failed")
                    return ApplyResult(live, ApplyStatus.REJECTED, diagnostics=result.output)

            os.replace(staged, live)
        finally:
            staged.unlink(missing_ok=True)

        logger.info(f"✓ Installed {live}")
        return self._reload(live, tmpl.reload)

    def remove(
        self,
        live_path: Path,
        validator: Optional[Command] = None,
        reload: Optional[Command] = None,
        config_set: Optional[ConfigSet] = None,
    ) -> ApplyResult:
        """Delete a live file if the set still validates without it.

        The check runs against a copy of the set (default: the file's
        directory) lacking the file; on rejection nothing is touched.
        """
        live = Path(live_path)
        if not live.exists():
            return ApplyResult(live, ApplyStatus.UNCHANGED)

        config_set = config_set or ConfigSet(live.parent)

        if self.mock:
            logger.info(f"MOCK: Would remove {live}")
            if validator:
                self.runner.run(_bind(validator, config_set, live))
            if reload:
                self.runner.run(reload)
            return ApplyResult(live, ApplyStatus.APPLIED, reloaded=reload is not None)

        if validator is not None:
            result = self._validate_set(config_set, validator, live)
            if not result.ok:
                logger.error(f"✗ Kept {live}: configuration invalid without it")
                return ApplyResult(live, ApplyStatus.REJECTED, diagnostics=result.output)

        live.unlink()
        logger.info(f"✓ Removed {live}")
        return self._reload(live, reload)

    def _validate_set(
        self,
        config_set: ConfigSet,
        validator: Command,
        live: Path,
        staged: Optional[Path] = None,
    ) -> CommandResult:
        """Check a scratch copy of the set with ``live`` replaced by ``staged``.

        Without ``staged`` the copy lacks ``live`` (removal). The copy sits
        beside the live root and is deleted afterwards.
        """
        root = Path(config_set.root)
        relative = live.relative_to(root)
        scratch = Path(tempfile.mkdtemp(prefix=f".{root.name}{SCRATCH_PREFIX}", dir=root.parent))
        try:
            copy = scratch / root.name
            _copy_set(root, copy, config_set.entries)
            target = copy / relative
            if staged is None:
                target.unlink(missing_ok=True)
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(staged, target)
            logger.debug(f"Validating {live} against {copy}")
            return self.runner.run(_bind(validator, ConfigSet(copy), target))
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

    def _reload(self, live: Path, reload: Optional[Command]) -> ApplyResult:
        if reload is None:
            return ApplyResult(live, ApplyStatus.APPLIED)

        result = self.runner.run(reload)
        if not result.ok:
            logger.warning(f"⚠ {live} installed but reload failed: {result.output}")
            return ApplyResult(live, ApplyStatus.APPLIED, diagnostics=result.output, reloaded=False)
        return ApplyResult(live, ApplyStatus.APPLIED, reloaded=True)


def _bind(validator: Command, config_set: Optional[ConfigSet], staged: Path) -> Command:
    if config_set is not None:
        validator = validator.substitute(CONFIG_ROOT_TOKEN, str(config_set.root))
    return validator.substitute(STAGED_TOKEN, str(staged))


def _copy_set(root: Path, destination: Path, entries: Sequence[str]):
    names = list(entries) or sorted(p.name for p in root.iterdir())
    ignore = shutil.ignore_patterns(f"*{STAGED_SUFFIX}")
    destination.mkdir()
    for name in names:
        source = root / name
        if source.is_dir():
            shutil.copytree(source, destination / name, ignore=ignore)
        elif source.is_file() and not name.endswith(STAGED_SUFFIX):
            shutil.copy2(source, destination / name)


def _staged_path(live: Path) -> Path:
    return live.with_name(f".{live.name}{STAGED_SUFFIX}")
