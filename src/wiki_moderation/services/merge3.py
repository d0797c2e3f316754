# src/wiki_moderation/services/merge3.py
"""Line-based three-way merge."""

from __future__ import annotations

from difflib import SequenceMatcher

Hunk = tuple[int, int, list[str], int]


def _hunks(base: list[str], other: list[str], side: int) -> list[Hunk]:
    matcher = SequenceMatcher(None, base, other, autojunk=False)
    return [
        (i1, i2, other[j1:j2], side)
        for tag, i1, i2, j1, j2 in matcher.get_opcodes()
        if tag != "equal"
    ]


def merge3(base: str, ours: str, theirs: str) -> str | None:
    """Combine two independent changes of ``base``.

    Changes touching the same or adjacent lines of ``base`` conflict,
    unless both sides made exactly the same change.

    Returns:
        The merged text, or None on conflict.
    """
    if ours == theirs or base == theirs:
        return ours
    if base == ours:
        return theirs

    base_lines = base.splitlines(keepends=True)
    # A missing final newline would make an unchanged last line look edited.
    if base_lines and not base_lines[-1].endswith("\n"):
        base_lines[-1] += "\n"
    ours_lines = (ours if ours.endswith("\n") or not ours else ours + "\n").splitlines(keepends=True)
    theirs_lines = (
        theirs if theirs.endswith("\n") or not theirs else theirs + "\n"
    ).splitlines(keepends=True)

    hunks = sorted(
        _hunks(base_lines, ours_lines, 0) + _hunks(base_lines, theirs_lines, 1),
        key=lambda hunk: (hunk[0], hunk[1]),
    )

    # Group hunks that overlap or touch.
    clusters: list[list[Hunk]] = []
    cluster_end = -1
    for hunk in hunks:
        if clusters and hunk[0] <= cluster_end:
            clusters[-1].append(hunk)
            cluster_end = max(cluster_end, hunk[1])
        else:
            clusters.append([hunk])
            cluster_end = hunk[1]

    result: list[str] = []
    position = 0
    for cluster in clusters:
        sides = {hunk[3] for hunk in cluster}
        if len(sides) > 1:
            first, *rest = cluster
            same = all(hunk[:3] == first[:3] for hunk in rest)
            if not same:
                return None
            cluster = [first]
        for start, end, lines, _side in cluster:
            result.extend(base_lines[position:start])
            result.extend(lines)
            position = end
    result.extend(base_lines[position:])

    merged = "".join(result)
    if not (ours.endswith("\n") and theirs.endswith("\n")) and merged.endswith("\n"):
        merged = merged[:-1]
    return merged
