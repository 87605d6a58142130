"""Parse rendering keys and plain structure out of agent markdown.

Rendering keys the referee is asked to emit:
    _Table{col:type,...}   optionally followed by a markdown table
    _Score{Axis:Opt_A=8,Opt_B=6}
    _Poll{a,b,c}

Everything else here reads ordinary markdown: headings, bullets, links and
"**Label:** value" lines.
"""

import re
from dataclasses import dataclass, field

TABLE_PATTERN = re.compile(r"_Table\{([^}]+)\}")
POLL_PATTERN = re.compile(r"_Poll\{([^}]+)\}")
SCORE_PATTERN = re.compile(r"_Score\{([^}]+)\}")

# Header row, separator row, then at least one row with pipes
MARKDOWN_TABLE_PATTERN = re.compile(
    r"^[ \t]*\|?.+\|.+\r?\n[ \t]*\|?[ \t]*:?-+:?[ \t]*(?:\|[ \t]*:?-+:?[ \t]*)+\|?[ \t]*\r?\n(?:[ \t]*\|?.+\|.+\r?\n?)+",
    re.MULTILINE,
)

_HEADING = re.compile(r"^(#{1,6})[ \t]+(.+?)[ \t#]*$", re.MULTILINE)
_BULLET = re.compile(r"^[ \t]*(?:[-*+]|\d+[.)])[ \t]+(.+)$")
_LINK = re.compile(r"\[([^\]]+)\]\((https?://[^)\s]+)\)")
_NUMBER = re.compile(r"^-?\d+\.?\d*$")

COLUMN_TYPES = ("string", "number", "boolean")


@dataclass
class TableColumn:
    name: str
    type: str = "string"   # one of COLUMN_TYPES


@dataclass
class TableBlock:
    columns: list[TableColumn]
    rows: list[dict[str, str | int | float]] = field(default_factory=list)
    raw: str = ""


@dataclass
class PollBlock:
    options: list[str]
    raw: str = ""


@dataclass
class ScoreBlock:
    axis: str
    scores: list[tuple[str, int]]
    raw: str = ""


@dataclass
class TextBlock:
    content: str


Block = TableBlock | PollBlock | ScoreBlock | TextBlock


def parse_table_key(content: str) -> list[TableColumn]:
    """"name:string,price:number" -> columns. Untyped or unknown types become string."""
    columns: list[TableColumn] = []
    for part in (p.strip() for p in content.split(",")):
        if not part:
            continue
        name, sep, type_str = part.rpartition(":")
        if not sep:
            columns.append(TableColumn(name=part))
            continue
        type_str = type_str.strip().lower()
        columns.append(TableColumn(name=name.strip(), type=type_str if type_str in COLUMN_TYPES else "string"))
    return columns


def _table_cells(line: str) -> list[str]:
    line = line.strip()
    if "|" not in line:
        return []
    if line.startswith("|"):
        line = line[1:]
    if line.endswith("|"):
        line = line[:-1]
    return [cell.strip() for cell in line.split("|")]


def parse_markdown_table(text: str) -> TableBlock:
    """Header, separator, rows. Numeric cells become numbers and mark their column numeric."""
    lines = [line for line in text.strip().splitlines() if line.strip()]
    if len(lines) < 2:
        return TableBlock(columns=[], raw=text)

    headers = [h for h in _table_cells(lines[0]) if h]
    columns = [TableColumn(name=h) for h in headers]
    rows: list[dict[str, str | int | float]] = []

    for line in lines[2:]:
        cells = _table_cells(line)
        if not cells:
            continue
        row: dict[str, str | int | float] = {}
        for idx, header in enumerate(headers):
            cell = cells[idx] if idx < len(cells) else ""
            if _NUMBER.match(cell):
                row[header] = float(cell) if "." in cell else int(cell)
                columns[idx].type = "number"
            else:
                row[header] = cell
        rows.append(row)

    return TableBlock(columns=columns, rows=rows, raw=text)


def parse_poll_key(content: str) -> list[str]:
    return [opt.strip() for opt in content.split(",") if opt.strip()]


def parse_score_key(content: str) -> ScoreBlock:
    """"Performance:React=8,Vue=7" -> axis plus (option, score) pairs. Bad numbers are skipped."""
    axis, sep, rest = content.partition(":")
    if not sep:
        return ScoreBlock(axis=content.strip(), scores=[])

    scores: list[tuple[str, int]] = []
    for part in (p.strip() for p in rest.split(",")):
        option, eq, value = part.partition("=")
        if not eq:
            continue
        match = re.match(r"\s*-?\d+", value)
        if match:
            scores.append((option.strip(), int(match.group())))
    return ScoreBlock(axis=axis.strip(), scores=scores)


def parse_blocks(markdown: str) -> list[Block]:
    """Split markdown into text and rendering-key blocks, in document order.

    A _Table key immediately followed by a markdown table is merged into one
    block: the key supplies column types, the table supplies names and rows.
    """
    matches: list[tuple[int, int, str, str, str]] = []   # start, end, kind, raw, content
    for kind, pattern in (("table", TABLE_PATTERN), ("md-table", MARKDOWN_TABLE_PATTERN),
                          ("poll", POLL_PATTERN), ("score", SCORE_PATTERN)):
        for m in pattern.finditer(markdown):
            content = m.group(1) if m.groups() else m.group(0)
            matches.append((m.start(), m.end(), kind, m.group(0), content))
    matches.sort(key=lambda m: m[0])

    kept: list[tuple[int, int, str, str, str]] = []
    for m in matches:
        start, end = m[0], m[1]
        if any(k[0] <= start < k[1] or k[0] < end <= k[1] for k in kept):
            continue
        kept.append(m)

    blocks: list[Block] = []
    last_end = 0
    i = 0
    while i < len(kept):
        start, end, kind, raw, content = kept[i]
        if start > last_end and markdown[last_end:start].strip():
            blocks.append(TextBlock(content=markdown[last_end:start]))

        if kind == "table":
            typed = parse_table_key(content)
            nxt = kept[i + 1] if i + 1 < len(kept) else None
            if nxt is not None and nxt[2] == "md-table" and not markdown[end:nxt[0]].strip():
                table = parse_markdown_table(nxt[4])
                if table.columns and table.rows:
                    blocks.append(_merge_table(typed, table, f"{raw}\n{nxt[3]}"))
                    last_end = nxt[1]
                    i += 2
                    continue
            blocks.append(TableBlock(columns=typed, raw=raw))
        elif kind == "md-table":
            table = parse_markdown_table(content)
            table.raw = raw
            blocks.append(table)
        elif kind == "poll":
            blocks.append(PollBlock(options=parse_poll_key(content), raw=raw))
        else:
            score = parse_score_key(content)
            score.raw = raw
            blocks.append(score)

        last_end = end
        i += 1

    if last_end < len(markdown) and markdown[last_end:].strip():
        blocks.append(TextBlock(content=markdown[last_end:]))
    return blocks


def _merge_table(typed: list[TableColumn], table: TableBlock, raw: str) -> TableBlock:
    columns = [
        TableColumn(name=table.columns[idx].name if idx < len(table.columns) else col.name, type=col.type)
        for idx, col in enumerate(typed)
    ]
    rows = []
    for row in table.rows:
        merged: dict[str, str | int | float] = {}
        for idx, col in enumerate(columns):
            source_name = table.columns[idx].name if idx < len(table.columns) else col.name
            merged[col.name] = row.get(source_name, "")
        rows.append(merged)
    return TableBlock(columns=columns, rows=rows, raw=raw)


def extract_custom_keys(markdown: str) -> list[Block]:
    return [b for b in parse_blocks(markdown) if not isinstance(b, TextBlock)]


def has_custom_keys(markdown: str) -> bool:
    return any(p.search(markdown) for p in (TABLE_PATTERN, POLL_PATTERN, SCORE_PATTERN, MARKDOWN_TABLE_PATTERN))


# --- plain markdown structure ---


def normalize_label(label: str) -> str:
    """Comparable form of an option or axis label: "Opt_A" and "**opt a**" match."""
    label = label.replace("_", " ").strip().strip("*`\"'").strip()
    return re.sub(r"\s+", " ", label).lower()


def match_label(label: str, candidates: list[str] | tuple[str, ...]) -> str | None:
    """Resolve a free-text label to one of candidates, or None.

    Exact normalized match wins; otherwise a unique containment match in either direction.
    """
    wanted = normalize_label(label)
    if not wanted:
        return None
    for candidate in candidates:
        if normalize_label(candidate) == wanted:
            return candidate
    partial = [c for c in candidates if normalize_label(c) in wanted or wanted in normalize_label(c)]
    return partial[0] if len(partial) == 1 else None


def split_sections(markdown: str) -> list[tuple[str, str]]:
    """(heading, body) pairs for every markdown heading, any level."""
    headings = list(_HEADING.finditer(markdown))
    sections = []
    for idx, heading in enumerate(headings):
        end = headings[idx + 1].start() if idx + 1 < len(headings) else len(markdown)
        sections.append((heading.group(2).strip(), markdown[heading.end():end].strip()))
    return sections


def find_section(markdown: str, *keywords: str) -> str | None:
    """Body of the first section whose heading contains any keyword (case-insensitive)."""
    lowered = [k.lower() for k in keywords]
    for title, body in split_sections(markdown):
        title_l = title.lower()
        if any(k in title_l for k in lowered):
            return body
    return None


def _clean(text: str) -> str:
    text = text.strip()
    text = re.sub(r"^\*\*(.+?)\*\*$", r"\1", text)
    return text.strip()


def extract_bullets(text: str) -> list[str]:
    bullets = []
    for line in text.splitlines():
        m = _BULLET.match(line)
        if m and _clean(m.group(1)):
            bullets.append(_clean(m.group(1)))
    return bullets


def extract_links(markdown: str) -> list[tuple[str, str]]:
    """(title, url) for every markdown link, first occurrence of each url."""
    seen: set[str] = set()
    links = []
    for m in _LINK.finditer(markdown):
        title, url = m.group(1).strip(), m.group(2).rstrip(".,;")
        if url in seen:
            continue
        seen.add(url)
        links.append((title, url))
    return links


def labeled_value(text: str, label: str) -> str | None:
    """Value of a "**Label:** value" or "- **Label**: value" line."""
    pattern = re.compile(
        rf"^[ \t]*(?:[-*+][ \t]+)?\**[ \t]*{re.escape(label)}[ \t]*\**[ \t]*:[ \t]*\**[ \t]*(.+?)[ \t]*$",
        re.IGNORECASE | re.MULTILINE,
    )
    m = pattern.search(text)
    if not m:
        return None
    value = m.group(1).strip().strip("*").strip()
    return value or None
