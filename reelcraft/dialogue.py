"""Parser for conversation scripts written as ``Speaker: text`` lines."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

_LINE_RE = re.compile(r"^([A-Za-z][A-Za-z0-9 ]*?)\s*:\s*(.+)$")
_FORMATTING = str.maketrans("", "", "*_~")


@dataclass(frozen=True)
class DialogueLine:
    speaker: str
    text: str


@dataclass
class DialogueScript:
    lines: list[DialogueLine] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def speakers(self) -> list[str]:
        """Speaker names in order of first appearance."""
        return list(dict.fromkeys(line.speaker for line in self.lines))

    def full_text(self) -> str:
        return " ".join(line.text for line in self.lines)


def parse_dialogue(text: str) -> DialogueScript:
    """Extract speaker lines; stage directions and unlabelled lines are skipped."""
    script = DialogueScript()
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith(("(", "[")):
            continue

        match = _LINE_RE.match(line)
        if not match:
            continue
        speaker, spoken = match.group(1).strip(), match.group(2).strip()
        if spoken.startswith("(") and spoken.endswith(")"):
            continue

        spoken = spoken.translate(_FORMATTING).strip()
        if spoken:
            script.lines.append(DialogueLine(speaker=speaker, text=spoken))
    return script
