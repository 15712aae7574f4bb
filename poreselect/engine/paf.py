"""PAF-style output records for resolved reads.

Each resolved read is written as one tab-separated PAF line. Unmapped and
ended reads have ``*`` in every alignment column. Optional tags:

- ``ch:i`` channel, ``ck:i`` chunks consumed
- ``mt:f`` mapping time (ms), ``wt:f`` time queued before mapping (ms)
- one of ``ej:f`` / ``kp:f`` / ``en:f``: decision, with the time since the
  read's first chunk (ms)
- ``dl:f`` unblock delay reported by the instrument (s), ejected reads only
"""

from __future__ import annotations

from dataclasses import dataclass, field

from poreselect.engine.models import Decision, MappingResult

DECISION_TAGS = {
    Decision.EJECT: "ej",
    Decision.KEEP: "kp",
    Decision.ENDED: "en",
}

TAG_DECISIONS = {tag: decision for decision, tag in DECISION_TAGS.items()}


def format_paf(result: MappingResult) -> str:
    """Render a result as one PAF line (no trailing newline)."""
    aln = result.alignment
    if aln is not None and result.is_mapped:
        columns = [
            result.read_id,
            result.query_length,
            aln.query_start,
            aln.query_end,
            aln.strand,
            aln.target,
            aln.target_length,
            aln.target_start,
            aln.target_end,
            aln.matches,
            aln.block_length,
            aln.mapq,
        ]
    else:
        columns = [result.read_id, result.query_length] + ["*"] * 9 + [255]

    tags = [
        f"ch:i:{result.channel}",
        f"ck:i:{result.chunk_count}",
        f"mt:f:{result.map_time * 1000:.2f}",
        f"wt:f:{result.wait_time * 1000:.2f}",
    ]
    tag = DECISION_TAGS.get(result.decision)
    if tag is not None:
        elapsed = result.decision_elapsed
        tags.append(f"{tag}:f:{elapsed * 1000:.2f}" if elapsed is not None else f"{tag}:f:*")
    if result.unblock_delay is not None:
        tags.append(f"dl:f:{result.unblock_delay:.3f}")

    return "\t".join(str(c) for c in columns + tags)


def format_diagnostic(message: str) -> str:
    return f"# {message}"


@dataclass
class PafRecord:
    """The parts of an emitted line needed for run summaries."""

    read_id: str
    mapped: bool
    target: str | None
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def decision(self) -> Decision | None:
        for tag, decision in TAG_DECISIONS.items():
            if tag in self.tags:
                return decision
        return None

    @property
    def decision_ms(self) -> float | None:
        for tag in TAG_DECISIONS:
            value = self.tags.get(tag)
            if value is not None and value != "*":
                return float(value)
        return None


def parse_paf_line(line: str) -> PafRecord | None:
    """Parse one output line; diagnostics and blank lines return None."""
    line = line.rstrip("\n")
    if not line or line.startswith("#"):
        return None
    fields = line.split("\t")
    if len(fields) < 12:
        raise ValueError(f"PAF line has {len(fields)} columns, expected at least 12")
    tags = {}
    for raw in fields[12:]:
        name, _, value = raw.split(":", 2)
        tags[name] = value
    target = fields[5] if fields[5] != "*" else None
    return PafRecord(read_id=fields[0], mapped=target is not None, target=target, tags=tags)
