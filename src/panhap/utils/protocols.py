from typing import Protocol, runtime_checkable, Sequence, Iterable, Optional

from panhap.core.ranges import SampleGamete


@runtime_checkable
class ExternalTool(Protocol):
    """
    Protocol for a command line tool.

    `run` blocks until the tool exits and returns its exit code; `stream` yields the tool's stdout lines
    as they are produced.
    """
    def run(self, args: Sequence[str]) -> int: ...
    def stream(self, args: Sequence[str]) -> Iterable[bytes]: ...


@runtime_checkable
class Projector(Protocol):
    """Protocol for objects that translate assembly coordinates to encoded reference coordinates."""
    def project(self, contig: str, sample_gamete: SampleGamete, position: int) -> Optional[int]: ...
