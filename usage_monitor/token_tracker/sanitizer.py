"""Best-effort repair of JSONL lines cut short by a killed writer.

Kept separate from the parser so its heuristics stay narrow: these helpers
only look at the raw text and never decide whether a line is usage data.
"""

from __future__ import annotations


def fix_json_line(line: str) -> str:
    """Strip one trailing comma and close an unterminated string.

    An odd number of ``"`` characters means the writer stopped inside a
    string, so ``"}`` is appended. The result may still be invalid JSON.
    """
    if line.endswith(","):
        line = line[:-1]
    if line.count('"') % 2 != 0:
        line = line + '"}'
    return line


def looks_like_partial_record(line: str) -> bool:
    """True if an unparseable line still carries usage-looking fields."""
    return "sessionId" in line and ("usage" in line or "message" in line)
