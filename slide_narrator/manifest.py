"""Structured input lists for ffmpeg's concat demuxer."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional


@dataclass(frozen=True)
class ManifestEntry:
    path: Path
    duration: Optional[float] = None


def quote_path(path: Path) -> str:
    """Quote a path for a concat script: single quotes, embedded quotes as '\\''."""

    return "'" + str(path).replace("'", "'\\''") + "'"


@dataclass
class ConcatManifest:
    entries: List[ManifestEntry] = field(default_factory=list)

    @classmethod
    def from_paths(cls, paths: Iterable[Path]) -> "ConcatManifest":
        return cls([ManifestEntry(Path(p)) for p in paths])

    def add(self, path: Path, duration: Optional[float] = None) -> None:
        self.entries.append(ManifestEntry(Path(path), duration))

    def render(self) -> str:
        lines = ["ffconcat version 1.0"]
        for entry in self.entries:
            lines.append(f"file {quote_path(entry.path.resolve())}")
            if entry.duration is not None:
                lines.append(f"duration {entry.duration:.3f}")
        return "\n".join(lines) + "\n"

    def write(self, output_path: Path) -> Path:
        if not self.entries:
            raise ValueError("Cannot write an empty concat manifest.")
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(self.render(), encoding="utf-8")
        return output_path

    def __len__(self) -> int:
        return len(self.entries)
