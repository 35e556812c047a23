"""Structural locators for DOM elements.

A locator is a CSS-style path used to re-find an element across renders:

    #hero-cta
    body > main.content > div.card.featured:nth-of-type(2) > button.primary

Generation rules:
- An element with a non-empty id short-circuits to ``#id``.
- Otherwise one step per ancestor below <html>: ``tag.class1.class2``, with
  ``:nth-of-type(n)`` appended only when a same-tag sibling has the exact
  same class set.
- Ids and class tokens are CSS-escaped (``md:flex`` becomes ``md\\:flex``),
  so utility-class names stay in the path instead of being dropped.
- The result is verified by resolving it back. If it lands on a different
  element, every step falls back to ``:nth-child(n)`` over all element
  siblings.

Resolution accepts only that grammar and translates it to XPath. Anything
else resolves to None.
"""

import re

from lxml import etree

from redline.logging import get_logger

logger = get_logger(__name__)

_ESCAPE = r"\\(?:[0-9a-fA-F]{1,6} ?|[^0-9a-fA-F\r\n])"
_NMSTART = rf"(?:[_a-zA-Z]|[^\x00-\x7f]|{_ESCAPE})"
_NMCHAR = rf"(?:[_a-zA-Z0-9-]|[^\x00-\x7f]|{_ESCAPE})"
_IDENT = rf"(?:--|-?{_NMSTART}){_NMCHAR}*"

_TAG_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9-]*$")
_STEP_RE = re.compile(
    r"(?P<tag>[a-zA-Z][a-zA-Z0-9-]*)"
    rf"(?P<classes>(?:\.{_IDENT})*)"
    r"(?::(?P<pseudo>nth-of-type|nth-child)\((?P<index>[1-9][0-9]*)\))?"
)
_CLASS_RE = re.compile(rf"\.({_IDENT})")
_ID_RE = re.compile(rf"^#(?P<id>{_IDENT})$")
_COMBINATOR_RE = re.compile(r"\s*>\s*")
_UNESCAPE_RE = re.compile(r"\\(?:([0-9a-fA-F]{1,6}) ?|(.))", re.DOTALL)

DOCUMENT_ROOT_TAG = "html"


def css_escape(value: str) -> str:
    """Escape a string for use as a CSS identifier, as ``CSS.escape()`` does."""
    out = []
    for index, char in enumerate(value):
        code = ord(char)
        if code == 0:
            out.append("\ufffd")
        elif (
            code <= 0x1F
            or code == 0x7F
            or (index == 0 and "0" <= char <= "9")
            or (index == 1 and "0" <= char <= "9" and value[0] == "-")
        ):
            out.append(f"\\{code:x} ")
        elif index == 0 and char == "-" and len(value) == 1:
            out.append("\\-")
        elif code >= 0x80 or char in "-_" or (char.isascii() and char.isalnum()):
            out.append(char)
        else:
            out.append(f"\\{char}")
    return "".join(out)


def css_unescape(value: str) -> str:
    def replace(match: re.Match) -> str:
        if match.group(1) is None:
            return match.group(2)
        code = int(match.group(1), 16)
        if code == 0 or code > 0x10FFFF or 0xD800 <= code <= 0xDFFF:
            return "\ufffd"
        return chr(code)

    return _UNESCAPE_RE.sub(replace, value)


# =============================================================================
# Generation
# =============================================================================


def generate_locator(element) -> str | None:
    """Generate a locator that resolves back to ``element``.

    Returns None for detached elements, non-element nodes (comments,
    processing instructions) and anything that is not an lxml element.
    """
    if not _is_element(element):
        return None

    root = element.getroottree().getroot()
    if root is None or root.tag != DOCUMENT_ROOT_TAG or element is root:
        return None

    element_id = element.get("id")
    if element_id:
        locator = f"#{css_escape(element_id)}"
        if resolve_locator(root, locator) is element:
            return locator

    ancestry = _ancestry(element, root)
    if ancestry is None:
        return None

    locator = " > ".join(_type_step(node) for node in ancestry)
    if resolve_locator(root, locator) is element:
        return locator

    fallback = " > ".join(_child_step(node) for node in ancestry)
    logger.debug("locator_fallback", locator=locator, fallback=fallback)
    return fallback


def _is_element(node) -> bool:
    return isinstance(node, etree._Element) and isinstance(node.tag, str)


def _ancestry(element, root) -> list | None:
    """Element and its ancestors below root, outermost first."""
    chain = []
    node = element
    while node is not None and node is not root:
        if not _TAG_RE.match(node.tag):
            return None
        chain.append(node)
        node = node.getparent()
    if node is None:
        return None
    chain.reverse()
    return chain


def _class_tokens(element) -> list[str]:
    seen: list[str] = []
    for token in (element.get("class") or "").split():
        if token not in seen:
            seen.append(token)
    return seen


def _compound(element) -> str:
    return element.tag.lower() + "".join(f".{css_escape(token)}" for token in _class_tokens(element))


def _element_siblings(element) -> list:
    parent = element.getparent()
    if parent is None:
        return [element]
    return [child for child in parent if isinstance(child.tag, str)]


def _type_step(element) -> str:
    step = _compound(element)
    class_set = frozenset(_class_tokens(element))
    same_tag = [node for node in _element_siblings(element) if node.tag == element.tag]
    twins = [node for node in same_tag if frozenset(_class_tokens(node)) == class_set]
    if len(twins) > 1:
        step += f":nth-of-type({same_tag.index(element) + 1})"
    return step


def _child_step(element) -> str:
    index = _element_siblings(element).index(element) + 1
    return f"{_compound(element)}:nth-child({index})"


# =============================================================================
# Resolution
# =============================================================================


def resolve_locator(document, locator: str):
    """Find the element a locator points at, or None.

    ``document`` may be an lxml ElementTree or any element of the document.
    Unsupported selector syntax yields None rather than an exception.
    """
    root = _document_root(document)
    if root is None or not isinstance(locator, str):
        return None

    locator = locator.strip()
    id_match = _ID_RE.match(locator)
    if id_match:
        matches = root.xpath("//*[@id=$id]", id=css_unescape(id_match.group("id")))
        return matches[0] if matches else None

    compiled = _locator_to_xpath(locator)
    if compiled is None:
        return None
    xpath, variables = compiled

    try:
        matches = root.xpath(xpath, **variables)
    except etree.XPathError:
        logger.debug("locator_xpath_failed", locator=locator, xpath=xpath)
        return None
    return matches[0] if matches else None


def _document_root(document):
    if isinstance(document, etree._ElementTree):
        return document.getroot()
    if _is_element(document):
        return document.getroottree().getroot()
    return None


def _locator_to_xpath(locator: str) -> tuple[str, dict[str, str]] | None:
    """Translate a locator to XPath; class tokens are bound as variables."""
    if not locator:
        return None

    steps: list[str] = []
    variables: dict[str, str] = {}
    pos = 0
    while True:
        match = _STEP_RE.match(locator, pos)
        if match is None:
            return None
        steps.append(_step_to_xpath(match, variables))
        pos = match.end()
        if pos == len(locator):
            break
        combinator = _COMBINATOR_RE.match(locator, pos)
        if combinator is None or combinator.end() == len(locator):
            return None
        pos = combinator.end()
    return "./" + "/".join(steps), variables


def _step_to_xpath(match: re.Match, variables: dict[str, str]) -> str:
    tag = match.group("tag").lower()
    class_predicates = ""
    for token in _CLASS_RE.findall(match.group("classes")):
        name = f"c{len(variables)}"
        variables[name] = f" {css_unescape(token)} "
        class_predicates += f"[contains(concat(' ', normalize-space(@class), ' '), ${name})]"

    pseudo = match.group("pseudo")
    if pseudo == "nth-of-type":
        return f"{tag}[{int(match.group('index'))}]{class_predicates}"
    if pseudo == "nth-child":
        return f"*[{int(match.group('index'))}][self::{tag}]{class_predicates}"
    return f"{tag}{class_predicates}"
