"""Poppler command line wrappers used to rasterize PDF documents."""
from __future__ import annotations

import logging
import os
import platform
import re
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol

from core.errors import ExternalToolError

LOGGER = logging.getLogger("slidesync.rasterize.poppler")

PageProgress = Callable[[int, int], None]

_NUMBER_SPLIT = re.compile(r"(\d+)")


class ToolDiscoveryError(ExternalToolError):
    """Raised when a required external helper cannot be located."""


class RasterizerError(ExternalToolError):
    """Raised when a document cannot be rasterized."""


class PageRasterizer(Protocol):
    def page_count(self, pdf_path: Path) -> int:
        ...

    def rasterize(
        self,
        pdf_path: Path,
        target_dir: Path,
        progress: Optional[PageProgress] = None,
    ) -> List[Path]:
        ...


@dataclass(slots=True)
class RasterizerConfig:
    pdftocairo_path: Optional[str] = None
    pdfinfo_path: Optional[str] = None
    resolution_dpi: Optional[int] = None
    poll_interval_s: float = 0.5
    timeout_s: float = 900.0


def _executable_name(base: str) -> str:
    if platform.system().lower().startswith("win"):
        return f"{base}.exe"
    return base


def _which_with_override(name: str, override: Optional[str]) -> Optional[str]:
    if override:
        candidate = Path(os.path.expandvars(os.path.expanduser(override)))
        if candidate.is_dir():
            exe = candidate / _executable_name(name)
            if exe.exists():
                return str(exe.resolve())
        elif candidate.exists():
            return str(candidate.resolve())
    return shutil.which(name)


def parse_pdf_info(text: str) -> Dict[str, str]:
    """Parse ``pdfinfo`` output into a ``key -> value`` mapping."""

    info: Dict[str, str] = {}
    for line in text.splitlines():
        if not line.strip() or ":" not in line:
            continue
        key, value = line.split(":", 1)
        info[key.strip()] = value.strip()
    return info


def natural_sort_key(path: Path) -> tuple:
    parts = _NUMBER_SPLIT.split(path.name.lower())
    return tuple((0, int(part), "") if part.isdigit() else (1, 0, part) for part in parts if part)


def list_page_images(directory: Path) -> List[Path]:
    """Return the PNG pages in *directory* in natural order (p-2 before p-10)."""

    return sorted(directory.glob("*.png"), key=natural_sort_key)


def _count_entries(directory: Path) -> int:
    try:
        return sum(1 for _ in directory.iterdir())
    except OSError:
        return 0


class PopplerRasterizer:
    """Runs ``pdfinfo`` and ``pdftocairo`` as child processes."""

    def __init__(self, config: Optional[RasterizerConfig] = None) -> None:
        self._config = config or RasterizerConfig()

    def _tool(self, name: str, override: Optional[str]) -> str:
        exe = _which_with_override(name, override)
        if not exe:
            raise ToolDiscoveryError(f"{name} executable not found; install poppler-utils or configure its path")
        return exe

    def page_count(self, pdf_path: Path) -> int:
        exe = self._tool("pdfinfo", self._config.pdfinfo_path)
        try:
            proc = subprocess.run(
                [exe, str(pdf_path)],
                capture_output=True,
                text=True,
                timeout=self._config.timeout_s,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise RasterizerError(f"pdfinfo failed for {pdf_path}: {exc}") from exc
        if proc.returncode != 0:
            raise RasterizerError(f"pdfinfo exited with {proc.returncode} for {pdf_path}: {proc.stderr.strip()}")
        value = parse_pdf_info(proc.stdout).get("Pages")
        try:
            return int(value or "")
        except ValueError as exc:
            raise RasterizerError(f"pdfinfo reported no page count for {pdf_path}") from exc

    def rasterize(
        self,
        pdf_path: Path,
        target_dir: Path,
        progress: Optional[PageProgress] = None,
    ) -> List[Path]:
        """Render every page of *pdf_path* as ``p-NN.png`` into an empty *target_dir*."""

        target_dir.mkdir(parents=True, exist_ok=True)
        if any(target_dir.iterdir()):
            raise RasterizerError(f"target directory {target_dir} must be empty")

        total = self.page_count(pdf_path)
        exe = self._tool("pdftocairo", self._config.pdftocairo_path)
        command = [exe, "-png"]
        if self._config.resolution_dpi:
            command += ["-r", str(int(self._config.resolution_dpi))]
        command += [str(pdf_path), str(target_dir / "p")]
        LOGGER.debug("Running %s", command)

        last_reported = -1

        def _report(count: int) -> None:
            nonlocal last_reported
            if progress is not None and count != last_reported:
                progress(count, total)
                last_reported = count

        try:
            proc = subprocess.Popen(
                command,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as exc:
            raise RasterizerError(f"could not start pdftocairo: {exc}") from exc

        deadline = time.monotonic() + self._config.timeout_s
        while True:
            try:
                _, stderr = proc.communicate(timeout=self._config.poll_interval_s)
                break
            except subprocess.TimeoutExpired:
                _report(_count_entries(target_dir))
                if time.monotonic() > deadline:
                    proc.kill()
                    proc.communicate()
                    raise RasterizerError(
                        f"pdftocairo timed out after {self._config.timeout_s:.0f}s for {pdf_path}"
                    )

        if proc.returncode != 0:
            raise RasterizerError(
                f"pdftocairo exited with {proc.returncode} for {pdf_path}: {(stderr or '').strip()}"
            )
        pages = list_page_images(target_dir)
        _report(len(pages))
        return pages
