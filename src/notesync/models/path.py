from dataclasses import dataclass
from typing import Tuple

SEPARATOR = "/"


def is_valid_segment(segment: str) -> bool:
    return bool(segment) and SEPARATOR not in segment


@dataclass(frozen=True)
class RemotePath:
    """Slash-separated address of a node in the remote tree."""
    parts: Tuple[str, ...]

    @classmethod
    def of(cls, *segments: str) -> "RemotePath":
        return cls(()).child(*segments)

    def child(self, *segments: str) -> "RemotePath":
        for segment in segments:
            if not is_valid_segment(segment):
                raise ValueError(f"Invalid path segment: {segment!r}")
        return RemotePath(self.parts + tuple(segments))

    @property
    def key(self) -> str:
        return self.parts[-1] if self.parts else ""

    def __str__(self) -> str:
        return SEPARATOR.join(self.parts)
