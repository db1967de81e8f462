"""
Markdown and plain-text serialization of output files.
"""

import posixpath

from .types import OutputFormat

PLAIN_RULE = "=" * 80


def separator(fmt: OutputFormat) -> str:
    """Text placed between two segments in the same file."""
    if fmt is OutputFormat.MARKDOWN:
        return "\n---\n\n"
    return f"\n{PLAIN_RULE}\n\n"


def render_block(text: str) -> str:
    """A segment as written to disk: trimmed, ending in a newline."""
    return text.strip() + "\n"


def render_append(text: str, fmt: OutputFormat, first: bool) -> str:
    """The exact bytes appended for one segment."""
    if first:
        return render_block(text)
    return separator(fmt) + render_block(text)


def relative_link(from_file: str, to_file: str) -> str:
    """Path of to_file relative to the directory holding from_file."""
    start = posixpath.dirname(from_file) or "."
    return posixpath.relpath(to_file, start)


def render_links(from_file: str, links: list[tuple[str, str]], fmt: OutputFormat) -> str:
    """
    Render a cross-reference annotation block.

    Args:
        from_file: File the block is appended to
        links: (target path, context) pairs
    """
    if fmt is OutputFormat.MARKDOWN:
        lines = ["", "---", "", "**See also:**", ""]
        for target, context in links:
            line = f"- [{target}]({relative_link(from_file, target)})"
            if context:
                line += f" - {context}"
            lines.append(line)
    else:
        lines = ["", PLAIN_RULE, "", "See also:"]
        for target, context in links:
            line = f"  - {target}"
            if context:
                line += f" ({context})"
            lines.append(line)
    return "\n".join(lines) + "\n"
