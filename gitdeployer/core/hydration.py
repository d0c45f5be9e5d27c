"""Manifest hydration — clear the output directory and run the renderer.

The renderer is an external binary (``hydrate`` by default) invoked once per
batch with a fixed argument contract::

    hydrate -b <src>/<base> -o <src>/<overlay> -y <src>/<output> <src>/<inventory>

All four paths are resolved against the source repository root.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Protocol, runtime_checkable

from gitdeployer.core.process import run_command
from gitdeployer.errors import CommandError

logger = logging.getLogger(__name__)

KEEP_FILE = ".gitkeep"


def clean_output_directory(directory: Path, keep: str = KEEP_FILE) -> int:
    """Remove every entry of ``directory`` except the ``keep`` marker file.

    Subdirectories are removed recursively.  A missing directory is left
    alone.  Returns the number of top-level entries removed.
    """
    directory = Path(directory)
    if not directory.exists():
        logger.debug("Output directory %s does not exist; nothing to clean", directory)
        return 0

    removed = 0
    for entry in directory.iterdir():
        if entry.name == keep:
            continue
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
        removed += 1
    return removed


@runtime_checkable
class Renderer(Protocol):
    """Anything that can render manifests for one batch."""

    def render(
        self,
        *,
        base_dir: Path,
        overlay_dir: Path,
        output_dir: Path,
        inventory: Path,
    ) -> None:
        ...


class HydrateCliRenderer:
    """Runs the ``hydrate`` CLI as a blocking subprocess.

    Parameters
    ----------
    binary:
        Renderer executable name or path.
    timeout:
        Seconds before the process is killed and the batch fails.
    """

    def __init__(self, binary: str = "hydrate", *, timeout: float | None = None) -> None:
        self.binary = binary
        self.timeout = timeout

    def render(
        self,
        *,
        base_dir: Path,
        overlay_dir: Path,
        output_dir: Path,
        inventory: Path,
    ) -> None:
        args = [
            "-b", str(base_dir),
            "-o", str(overlay_dir),
            "-y", str(output_dir),
            str(inventory),
        ]
        run_command(self.binary, args, cwd=None, timeout=self.timeout, error_cls=CommandError)


class HydrationRunner:
    """Prepares the output directory and invokes the renderer.

    Parameters
    ----------
    renderer:
        The renderer port.  Tests substitute a fake.
    base_dir, overlay_dir, output_dir, inventory_path:
        Paths relative to a repository root.
    """

    def __init__(
        self,
        renderer: Renderer,
        *,
        base_dir: str,
        overlay_dir: str,
        output_dir: str,
        inventory_path: str,
    ) -> None:
        self.renderer = renderer
        self.base_dir = base_dir
        self.overlay_dir = overlay_dir
        self.output_dir = output_dir
        self.inventory_path = inventory_path

    def hydrate(self, source_root: Path, output_root: Path) -> None:
        """Clear ``output_root/output_dir`` then render from ``source_root``."""
        clean_output_directory(Path(output_root) / self.output_dir)

        source_root = Path(source_root)
        logger.info("Hydrating manifests from %s", source_root)
        self.renderer.render(
            base_dir=source_root / self.base_dir,
            overlay_dir=source_root / self.overlay_dir,
            output_dir=source_root / self.output_dir,
            inventory=source_root / self.inventory_path,
        )
