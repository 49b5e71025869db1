from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence


def escape_value(value: str) -> str:
    """Escape a value for use inside a quoted filter option."""
    return value.replace("'", "'\\''")


@dataclass
class FilterStage:
    inputs: Sequence[str]
    filter: str
    outputs: Sequence[str] = field(default_factory=list)

    def render(self) -> str:
        ins = "".join(f"[{label}]" for label in self.inputs)
        outs = "".join(f"[{label}]" for label in self.outputs)
        return f"{ins}{self.filter}{outs}"


class FilterGraph:
    """Ordered list of filter stages rendered into a ``-filter_complex`` value."""

    def __init__(self) -> None:
        self._stages: List[FilterStage] = []
        self._labels: set[str] = set()

    def add(self, inputs: Sequence[str], filter: str, outputs: Sequence[str] = ()) -> FilterGraph:
        for label in outputs:
            if label in self._labels:
                raise ValueError(f"duplicate filter graph label: {label}")
            self._labels.add(label)
        self._stages.append(FilterStage(list(inputs), filter, list(outputs)))
        return self

    def __len__(self) -> int:
        return len(self._stages)

    @property
    def stages(self) -> List[FilterStage]:
        return list(self._stages)

    def render(self) -> str:
        return ";".join(stage.render() for stage in self._stages)
