"""
Declarative ffmpeg filter graph.

The assembly engine describes an encode as data — ordered inputs, filter
chains between named pads, output stream mapping and output options — and
only then turns it into an argv with FilterGraph.to_command().  Graph
construction is therefore testable without an encoder binary.

Pad naming:
  "<n>:v" / "<n>:a" / "<n>:s"   stream of input n (input order = list order)
  anything else                 intermediate pad produced by a chain

Validation (on construction):
  - every chain input is an input stream or a pad produced by an earlier chain
  - every intermediate pad is produced exactly once and consumed at most once
  - every mapping refers to an input stream or a produced pad
"""
from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, Field, model_validator

_STREAM_REF = re.compile(r"^(\d+):([vas])$")


class GraphInput(BaseModel):
    """One `-i` input with the options that must precede it."""
    path: str
    role: str                                    # "visual" | "audio" | "subtitles"
    options: list[str] = Field(default_factory=list)


class FilterChain(BaseModel):
    """[in_a][in_b]filter1,filter2[out]"""
    inputs: list[str]
    filters: list[str]
    outputs: list[str]

    def render(self) -> str:
        ins = "".join(f"[{p}]" for p in self.inputs)
        outs = "".join(f"[{p}]" for p in self.outputs)
        return f"{ins}{','.join(self.filters)}{outs}"


class FilterGraph(BaseModel):
    inputs: list[GraphInput]
    chains: list[FilterChain] = Field(default_factory=list)
    maps: list[str]                              # pad names or "<n>:<type>"
    output_options: list[str] = Field(default_factory=list)
    output_path: str
    duration_s: Optional[float] = None           # emitted as -t on the output

    @model_validator(mode="after")
    def _check_pads(self) -> "FilterGraph":
        produced: set[str] = set()
        consumed: set[str] = set()
        for idx, chain in enumerate(self.chains):
            for pad in chain.inputs:
                if self._is_input_stream(pad):
                    continue
                if pad not in produced:
                    raise ValueError(f"chain {idx} consumes unknown pad [{pad}]")
                if pad in consumed:
                    raise ValueError(f"pad [{pad}] consumed twice")
                consumed.add(pad)
            for pad in chain.outputs:
                if self._is_input_stream(pad) or pad in produced:
                    raise ValueError(f"pad [{pad}] produced twice or shadows an input")
                produced.add(pad)
        for target in self.maps:
            if not (self._is_input_stream(target) or target in produced):
                raise ValueError(f"map target {target!r} does not exist")
            if target in consumed:
                raise ValueError(f"map target [{target}] is already consumed by a filter")
        if self.duration_s is not None and self.duration_s <= 0:
            raise ValueError(f"duration_s must be positive, got {self.duration_s}")
        return self

    def _is_input_stream(self, pad: str) -> bool:
        m = _STREAM_REF.match(pad)
        return bool(m) and int(m.group(1)) < len(self.inputs)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def filter_complex(self) -> str:
        return ";".join(chain.render() for chain in self.chains)

    def input_index(self, role: str) -> Optional[int]:
        """Index of the first input with *role*, or None."""
        for idx, graph_input in enumerate(self.inputs):
            if graph_input.role == role:
                return idx
        return None

    def to_command(self, binary: str = "ffmpeg") -> list[str]:
        cmd: list[str] = [binary, "-y", "-hide_banner", "-nostdin"]
        for graph_input in self.inputs:
            cmd += graph_input.options
            cmd += ["-i", graph_input.path]
        if self.chains:
            cmd += ["-filter_complex", self.filter_complex()]
        for target in self.maps:
            cmd += ["-map", target if self._is_input_stream(target) else f"[{target}]"]
        if self.duration_s is not None:
            cmd += ["-t", f"{self.duration_s:.3f}"]
        cmd += self.output_options
        cmd.append(self.output_path)
        return cmd
