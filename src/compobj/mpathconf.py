"""Section-tree parser for /etc/multipath.conf.

The parser keeps line indices so that callers can edit the original text
in place: replace an attribute line, insert before a section's closing
brace, or append a new section.
"""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass, field

MULTI_VALUED = frozenset({"wwid", "devnode", "property"})
TOP_SECTIONS = ("defaults", "overrides", "blacklist", "blacklist_exceptions", "devices", "multipaths")

_RE_DEVICE = re.compile(r"device\.\{([^}]+)\}\.\{([^}]+)\}")
_RE_MULTIPATH = re.compile(r"multipath\.\{([^}]+)\}")


@dataclass
class Attr:
    line: int
    value: str


@dataclass
class Section:
    name: str
    depth: int
    start: int
    end: int = -1
    attrs: dict[str, list[Attr]] = field(default_factory=dict)
    children: list[Section] = field(default_factory=list)

    def values(self, attr: str) -> list[str]:
        return [a.value for a in self.attrs.get(attr, [])]

    def first(self, attr: str) -> str | None:
        values = self.values(attr)
        return values[0] if values else None

    def child(self, name: str) -> Section | None:
        for section in self.children:
            if section.name == name:
                return section
        return None

    def device(self, vendor: str, product: str) -> Section | None:
        for section in self.children:
            if section.name == "device" and section.first("vendor") == vendor and section.first("product") == product:
                return section
        return None

    def multipath(self, wwid: str) -> Section | None:
        for section in self.children:
            if section.name == "multipath" and section.first("wwid") == wwid:
                return section
        return None


def strip_comment(line: str) -> str:
    in_quote = False
    for i, char in enumerate(line):
        if char == '"':
            in_quote = not in_quote
        elif char in "#!" and not in_quote:
            return line[:i]
    return line


def tokenize(line: str) -> list[str]:
    text = strip_comment(line).strip()
    if not text:
        return []
    try:
        return shlex.split(text, posix=True)
    except ValueError:
        return text.split()


def parse(text: str) -> Section:
    """Parse the configuration into a tree rooted at an unnamed section."""
    lines = text.splitlines()
    root = Section(name="", depth=0, start=-1, end=len(lines))
    stack = [root]
    for index, line in enumerate(lines):
        tokens = tokenize(line)
        if not tokens:
            continue
        opening = " ".join(tokens)
        if opening.endswith("{") and len(opening[:-1].split()) == 1:
            section = Section(name=opening[:-1].strip(), depth=len(stack), start=index)
            stack[-1].children.append(section)
            stack.append(section)
        elif tokens == ["}"]:
            if len(stack) > 1:
                stack.pop().end = index
        else:
            value = " ".join(tokens[1:])
            stack[-1].attrs.setdefault(tokens[0], []).append(Attr(line=index, value=value))
    while len(stack) > 1:
        stack.pop().end = len(lines)
    return root


@dataclass(frozen=True)
class MpathKey:
    """A dotted rule key resolved against the section grammar."""

    section: str
    sub: str | None = None
    ids: tuple[str, ...] = ()
    attr: str | None = None

    @property
    def presence_only(self) -> bool:
        return self.sub == "device" and self.attr is None

    @property
    def multi_valued(self) -> bool:
        return self.sub is None and self.attr in MULTI_VALUED

    def locate(self, root: Section) -> tuple[Section | None, Section | None]:
        """Return (top section, target section); either may be missing."""
        top = root.child(self.section)
        if top is None or self.sub is None:
            return top, top
        if self.sub == "device":
            return top, top.device(*self.ids)
        return top, top.multipath(self.ids[0])

    def values(self, root: Section) -> list[str]:
        _, target = self.locate(root)
        if target is None or self.attr is None:
            return []
        return target.values(self.attr)


def _unquote(value: str) -> str:
    return value.strip().strip('"')


def parse_key(key: str) -> MpathKey:
    """Parse a rule key such as ``devices.device.{HP}.{OPEN-V}.path_checker``."""
    key = key.strip()
    section, _, rest = key.partition(".")
    if section not in TOP_SECTIONS:
        raise ValueError(f"the first word of key must be in: {', '.join(TOP_SECTIONS)} in key: {key}")
    if not rest:
        raise ValueError(f"the key {key} is malformed: {section} must be followed by an attribute")

    if rest.startswith("device"):
        if section not in ("blacklist", "blacklist_exceptions", "devices"):
            raise ValueError(f"the key {key} is malformed: no device subsection in {section}")
        m = _RE_DEVICE.match(rest)
        if not m:
            raise ValueError(f"in the key {key} device must be used with the form: device.{{vendor}}.{{product}}")
        attr = rest[m.end() :].lstrip(".") or None
        return MpathKey(section, "device", (_unquote(m.group(1)), _unquote(m.group(2))), attr)

    if rest.startswith("multipath"):
        if section != "multipaths":
            raise ValueError(f"the key {key} is malformed: no multipath subsection in {section}")
        m = _RE_MULTIPATH.match(rest)
        if not m:
            raise ValueError(f"in the key {key} multipath must be used with the form: multipath.{{WWID}}")
        attr = rest[m.end() :].lstrip(".")
        if not attr:
            raise ValueError(f"the key {key} is malformed: multipath.{{WWID}} must be followed by an attribute")
        return MpathKey(section, "multipath", (_unquote(m.group(1)),), attr)

    if section in ("devices", "multipaths"):
        raise ValueError(f"the key {key} is malformed: {section} only holds {section[:-1]} subsections")
    if "." in rest:
        raise ValueError(f"the key {key} is malformed: unknown subsection in {rest}")
    if section.startswith("blacklist") and rest not in MULTI_VALUED:
        raise ValueError(f"the key {key} is malformed: unknown {section} keyword {rest}")
    return MpathKey(section, None, (), rest)


def _quote(value: str) -> str:
    return f'"{value}"'


def block(name: str, depth: int, body: list[str]) -> list[str]:
    indent = "\t" * depth
    return [f"{indent}{name} {{", *body, f"{indent}}}"]


def attr_line(name: str, value: str, depth: int) -> str:
    indent = "\t" * depth
    return f"{indent}{name} {value}"


def device_block(vendor: str, product: str, depth: int, extra: list[tuple[str, str]]) -> list[str]:
    body = [attr_line("vendor", _quote(vendor), depth + 1), attr_line("product", _quote(product), depth + 1)]
    body += [attr_line(name, value, depth + 1) for name, value in extra]
    return block("device", depth, body)


def multipath_block(wwid: str, depth: int, extra: list[tuple[str, str]]) -> list[str]:
    body = [attr_line("wwid", wwid, depth + 1)]
    body += [attr_line(name, value, depth + 1) for name, value in extra]
    return block("multipath", depth, body)


def apply(text: str, key: MpathKey, value: str) -> str:
    """Return text edited so that key holds value."""
    lines = text.splitlines()
    root = parse(text)
    top, target = key.locate(root)
    extra = [(key.attr, value)] if key.attr else []

    if target is not None and key.attr is not None:
        existing = target.attrs.get(key.attr)
        if existing and not key.multi_valued:
            index = existing[0].line
            comment = lines[index][len(strip_comment(lines[index])) :]
            lines[index] = attr_line(key.attr, value, target.depth) + (f" {comment}" if comment else "")
        else:
            lines.insert(target.end, attr_line(key.attr, value, target.depth))
    elif target is not None:
        return text
    elif top is not None:
        if key.sub == "device":
            new = device_block(key.ids[0], key.ids[1], top.depth, extra)
        else:
            new = multipath_block(key.ids[0], top.depth, extra)
        lines[top.end : top.end] = new
    else:
        if key.sub == "device":
            body = device_block(key.ids[0], key.ids[1], 1, extra)
        elif key.sub == "multipath":
            body = multipath_block(key.ids[0], 1, extra)
        else:
            body = [attr_line(key.attr or "", value, 1)]
        lines += block(key.section, 0, body)
    return "\n".join(lines) + "\n"
