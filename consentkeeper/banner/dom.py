"""Serializable snapshot of a rendered page.

The page driver captures the rendered element tree (including open shadow
roots) together with the layout and computed-style facts the locator needs.
Each element carries a ``ref`` handle that the driver resolves back to the
live element when a control has to be invoked.

A small CSS selector engine covers the selectors used by the keyword
tables: comma lists, descendant and child combinators, type, ``#id``,
``.class``, attribute presence and ``=``, ``*=``, ``^=``, ``$=`` operators,
and ``:first-child`` / ``:last-child``.
"""

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union


class SelectorError(ValueError):
    """Selector uses syntax the engine does not support."""
    pass


@dataclass(eq=False)
class PageNode:
    """One element of the captured page."""

    ref: int
    tag: str
    attrs: Dict[str, str] = field(default_factory=dict)
    content: List[Union[str, "PageNode"]] = field(default_factory=list)
    shadow_children: List["PageNode"] = field(default_factory=list)
    width: float = 0.0
    height: float = 0.0
    display: str = "block"
    visibility: str = "visible"
    opacity: str = "1"
    position: str = "static"
    z_index: Optional[int] = None
    checked: Optional[bool] = None
    parent: Optional["PageNode"] = field(default=None, repr=False)
    shadow_host: Optional["PageNode"] = field(default=None, repr=False)

    def __repr__(self) -> str:
        ident = f"#{self.id}" if self.id else ""
        return f"<PageNode ref={self.ref} {self.tag}{ident}>"

    @property
    def children(self) -> List["PageNode"]:
        return [c for c in self.content if isinstance(c, PageNode)]

    @property
    def id(self) -> str:
        return self.attrs.get("id", "")

    @property
    def classes(self) -> List[str]:
        return self.attrs.get("class", "").split()

    @property
    def aria_label(self) -> str:
        return self.attrs.get("aria-label", "")

    @property
    def text_content(self) -> str:
        """Concatenated text of this element and its light-DOM descendants."""
        parts: List[str] = []
        stack: List[Union[str, PageNode]] = [self]
        while stack:
            item = stack.pop()
            if isinstance(item, str):
                parts.append(item)
            else:
                stack.extend(reversed(item.content))
        return "".join(parts)

    @property
    def markup_text(self) -> str:
        """Attribute values of this element and its descendants.

        Stands in for a scan of the element's inner markup.
        """
        values = []
        for node in self.iter_self_and_descendants():
            values.extend(node.attrs.values())
        return " ".join(values)

    @property
    def is_checked(self) -> bool:
        return bool(self.checked) or self.attrs.get("aria-checked") == "true"

    def is_visible(self) -> bool:
        """Not hidden by display, visibility or opacity and has a rendered size."""
        try:
            transparent = float(self.opacity) == 0.0
        except (TypeError, ValueError):
            transparent = False
        return (
            self.display != "none"
            and self.visibility != "hidden"
            and not transparent
            and self.width > 0
            and self.height > 0
        )

    @property
    def siblings(self) -> List["PageNode"]:
        if self.parent is not None:
            return self.parent.children
        if self.shadow_host is not None:
            return self.shadow_host.shadow_children
        return [self]

    def iter_descendants(self) -> Iterator["PageNode"]:
        """Light-DOM descendants in document order."""
        stack = list(reversed(self.children))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def iter_self_and_descendants(self) -> Iterator["PageNode"]:
        yield self
        yield from self.iter_descendants()

    def iter_shadow_hosts(self) -> Iterator["PageNode"]:
        """Elements hosting a shadow root, including hosts nested in shadow trees."""
        for node in self.iter_self_and_descendants():
            if node.shadow_children:
                yield node
                for shadow_node in node.shadow_children:
                    yield from shadow_node.iter_shadow_hosts()

    def iter_shadow_tree(self) -> Iterator["PageNode"]:
        """Elements inside this host's shadow root."""
        for top in self.shadow_children:
            yield from top.iter_self_and_descendants()

    def matches(self, selector: str) -> bool:
        return any(_match_complex(self, complex_sel) for complex_sel in parse_selector(selector))

    def select(self, selector: str) -> List["PageNode"]:
        """Descendants matching ``selector`` in document order."""
        return _select(self.iter_descendants(), selector)

    def select_one(self, selector: str) -> Optional["PageNode"]:
        found = self.select(selector)
        return found[0] if found else None

    def select_in_shadow(self, selector: str) -> List["PageNode"]:
        return _select(self.iter_shadow_tree(), selector)

    def closest(self, selector: str) -> Optional["PageNode"]:
        node: Optional[PageNode] = self
        while node is not None:
            if node.matches(selector):
                return node
            node = node.parent
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], parent: Optional["PageNode"] = None) -> "PageNode":
        """Build a node (and its subtree) from the driver's capture format."""
        z_index = data.get("zIndex")
        try:
            z_index = int(z_index) if z_index not in (None, "", "auto") else None
        except (TypeError, ValueError):
            z_index = None

        node = cls(
            ref=int(data.get("ref", -1)),
            tag=str(data.get("tag", "")).lower(),
            attrs={str(k).lower(): str(v) for k, v in (data.get("attrs") or {}).items()},
            width=float(data.get("width") or 0),
            height=float(data.get("height") or 0),
            display=data.get("display") or "block",
            visibility=data.get("visibility") or "visible",
            opacity=str(data.get("opacity", "1")),
            position=data.get("position") or "static",
            z_index=z_index,
            checked=data.get("checked"),
            parent=parent,
        )
        for child in data.get("children") or []:
            if isinstance(child, str):
                node.content.append(child)
            else:
                node.content.append(cls.from_dict(child, parent=node))
        for child in data.get("shadow") or []:
            shadow_node = cls.from_dict(child, parent=None)
            shadow_node.shadow_host = node
            node.shadow_children.append(shadow_node)
        return node


@dataclass
class PageSnapshot:
    """The captured document plus viewport facts."""

    url: str
    root: PageNode
    viewport_width: float = 1280.0
    viewport_height: float = 720.0

    def iter_elements(self) -> Iterator[PageNode]:
        return self.root.iter_self_and_descendants()

    def select(self, selector: str) -> List[PageNode]:
        return _select(self.iter_elements(), selector)

    def select_one(self, selector: str) -> Optional[PageNode]:
        found = self.select(selector)
        return found[0] if found else None

    def find_by_id(self, element_id: str) -> Optional[PageNode]:
        for node in self.iter_elements():
            if node.id == element_id:
                return node
        return None

    def find_by_ref(self, ref: int) -> Optional[PageNode]:
        for node in self.iter_elements():
            if node.ref == ref:
                return node
        for host in self.root.iter_shadow_hosts():
            for node in host.iter_shadow_tree():
                if node.ref == ref:
                    return node
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PageSnapshot":
        return cls(
            url=data.get("url", ""),
            root=PageNode.from_dict(data["root"]),
            viewport_width=float(data.get("viewportWidth") or 1280),
            viewport_height=float(data.get("viewportHeight") or 720),
        )


# Selector engine

@dataclass(frozen=True)
class _AttrTest:
    name: str
    op: Optional[str] = None
    value: str = ""

    def test(self, attrs: Dict[str, str]) -> bool:
        if self.name not in attrs:
            return False
        actual = attrs[self.name]
        if self.op is None:
            return True
        if self.op == "=":
            return actual == self.value
        if self.op == "*=":
            return bool(self.value) and self.value in actual
        if self.op == "^=":
            return bool(self.value) and actual.startswith(self.value)
        if self.op == "$=":
            return bool(self.value) and actual.endswith(self.value)
        return False


@dataclass(frozen=True)
class _Compound:
    tag: Optional[str] = None
    ids: Tuple[str, ...] = ()
    classes: Tuple[str, ...] = ()
    attrs: Tuple[_AttrTest, ...] = ()
    pseudos: Tuple[str, ...] = ()

    def test(self, node: PageNode) -> bool:
        if self.tag is not None and node.tag != self.tag:
            return False
        if any(node.id != i for i in self.ids):
            return False
        if self.classes:
            node_classes = node.classes
            if any(c not in node_classes for c in self.classes):
                return False
        if any(not a.test(node.attrs) for a in self.attrs):
            return False
        for pseudo in self.pseudos:
            siblings = node.siblings
            if pseudo == "first-child" and (not siblings or siblings[0] is not node):
                return False
            if pseudo == "last-child" and (not siblings or siblings[-1] is not node):
                return False
        return True


# A complex selector: compounds left to right and the combinators between them
_Complex = Tuple[Tuple[_Compound, ...], Tuple[str, ...]]

_TOKEN = re.compile(
    r"""
    (?P<tag>\*|[a-zA-Z][\w-]*)
    |\#(?P<id>[\w-]+)
    |\.(?P<cls>[\w-]+)
    |\[\s*(?P<attr>[\w:-]+)\s*(?:(?P<op>[*^$]?=)\s*(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)'|(?P<bare>[^\]\s]+)))?\s*\]
    |:(?P<pseudo>first-child|last-child)
    |(?P<comb>\s*>\s*|\s+)
    """,
    re.VERBOSE,
)


def _split_list(selector: str) -> List[str]:
    parts, depth, quote, current = [], 0, None, []
    for ch in selector:
        if quote:
            if ch == quote:
                quote = None
        elif ch in "\"'":
            quote = ch
        elif ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(ch)
    parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


def _parse_complex(selector: str) -> _Complex:
    compounds: List[_Compound] = []
    combinators: List[str] = []
    pending: Dict[str, list] = {"tag": [], "ids": [], "classes": [], "attrs": [], "pseudos": []}
    has_simple = False
    pos = 0

    def flush() -> None:
        nonlocal pending, has_simple
        if not has_simple:
            raise SelectorError(f"Empty compound selector in {selector!r}")
        tag = pending["tag"][0] if pending["tag"] else None
        compounds.append(_Compound(
            tag=None if tag in (None, "*") else tag.lower(),
            ids=tuple(pending["ids"]),
            classes=tuple(pending["classes"]),
            attrs=tuple(pending["attrs"]),
            pseudos=tuple(pending["pseudos"]),
        ))
        pending = {"tag": [], "ids": [], "classes": [], "attrs": [], "pseudos": []}
        has_simple = False

    while pos < len(selector):
        m = _TOKEN.match(selector, pos)
        if m is None or m.end() == pos:
            raise SelectorError(f"Unsupported selector syntax at {selector[pos:]!r}")
        pos = m.end()

        if m.group("comb") is not None:
            flush()
            combinators.append(">" if ">" in m.group("comb") else " ")
        elif m.group("tag") is not None:
            if has_simple:
                raise SelectorError(f"Type selector must come first in {selector!r}")
            pending["tag"].append(m.group("tag"))
            has_simple = True
        elif m.group("id") is not None:
            pending["ids"].append(m.group("id"))
            has_simple = True
        elif m.group("cls") is not None:
            pending["classes"].append(m.group("cls"))
            has_simple = True
        elif m.group("attr") is not None:
            value = next((g for g in (m.group("dq"), m.group("sq"), m.group("bare")) if g is not None), "")
            pending["attrs"].append(_AttrTest(m.group("attr").lower(), m.group("op"), value))
            has_simple = True
        else:
            pending["pseudos"].append(m.group("pseudo"))
            has_simple = True

    flush()
    return tuple(compounds), tuple(combinators)


@lru_cache(maxsize=512)
def parse_selector(selector: str) -> Tuple[_Complex, ...]:
    """Parse a selector list.

    Raises:
        SelectorError: On unsupported or malformed syntax.
    """
    parts = _split_list(selector)
    if not parts:
        raise SelectorError("Empty selector")
    return tuple(_parse_complex(part) for part in parts)


def _match_from(node: PageNode, compounds: Tuple[_Compound, ...], combinators: Tuple[str, ...], index: int) -> bool:
    if not compounds[index].test(node):
        return False
    if index == 0:
        return True

    if combinators[index - 1] == ">":
        return node.parent is not None and _match_from(node.parent, compounds, combinators, index - 1)

    ancestor = node.parent
    while ancestor is not None:
        if _match_from(ancestor, compounds, combinators, index - 1):
            return True
        ancestor = ancestor.parent
    return False


def _match_complex(node: PageNode, complex_sel: _Complex) -> bool:
    compounds, combinators = complex_sel
    return _match_from(node, compounds, combinators, len(compounds) - 1)


def _select(nodes: Iterator[PageNode], selector: str) -> List[PageNode]:
    parsed = parse_selector(selector)
    return [node for node in nodes if any(_match_complex(node, c) for c in parsed)]
