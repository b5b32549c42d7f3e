"""Jinja2 rendering for files classctl writes on the host.

Built-in templates ship next to this module. A directory passed to
:meth:`TemplateEngine.with_overrides` is searched first, so administrators can
shadow any built-in template with a file of the same relative name.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, StrictUndefined

BUILTIN_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class TemplateEngine:
    """Render named templates with strict undefined-variable checking."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine searching *override_dir* before the built-ins."""
        loaders = []
        if override_dir is not None and Path(override_dir).is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(FileSystemLoader(str(BUILTIN_DIR)))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        return cls(environment)

    def render_to_string(self, name: str, context: Mapping[str, object]) -> str:
        """Render *name* with *context*."""
        return self.environment.get_template(name).render(**context)

    def render_to_path(
        self,
        name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render *name* into *destination*; return False when content is unchanged."""
        rendered = self.render_to_string(name, context)
        if destination.exists() and destination.read_text(encoding="utf-8") == rendered:
            return False
        destination.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(
            dir=str(destination.parent), prefix=f".{destination.name}."
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                handle.write(rendered)
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, destination)
        finally:
            tmp_path.unlink(missing_ok=True)
        return True


__all__ = ["TemplateEngine"]
