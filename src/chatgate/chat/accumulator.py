"""Reassembly of tool calls streamed in fragments."""

from dataclasses import dataclass

from chatgate.llm.client import ToolCallDelta


@dataclass
class ToolCallFragment:
    """A tool call being assembled from stream deltas.

    ``arguments`` is only safe to parse once the turn has finished.
    """

    index: int
    id: str = ""
    name: str = ""
    arguments: str = ""


class ToolCallAccumulator:
    """Assembles complete tool calls from streaming deltas, keyed by index."""

    def __init__(self) -> None:
        self._pending: dict[int, ToolCallFragment] = {}

    def feed(self, delta: ToolCallDelta) -> None:
        """Merge one delta; argument pieces concatenate in arrival order."""
        fragment = self._pending.get(delta.index)
        if fragment is None:
            fragment = self._pending[delta.index] = ToolCallFragment(index=delta.index)
        if delta.id:
            fragment.id = delta.id
        if delta.name:
            fragment.name = delta.name
        if delta.arguments:
            fragment.arguments += delta.arguments

    def finalize(self) -> list[ToolCallFragment]:
        """Return accumulated tool calls in index order."""
        return [self._pending[i] for i in sorted(self._pending)]
