"""
Hadoop-style XML property lists, as used by `*-site.xml` configuration files:

    <?xml version="1.0"?>
    <configuration>
      <property>
        <name>some.key</name>
        <value>some value</value>
      </property>
    </configuration>

Only `<property>` entries are inspected or modified.  Everything else in the file, including the
prolog before the root element, comments and unknown elements, is written back as it was read.
"""

import logging
import os
import re
import shutil
import tempfile
from typing import Iterator, List, Mapping, Optional, Tuple
from xml.etree import ElementTree

from .common import Collect, NotFound, Result, State


LOG = logging.getLogger(__name__)

Properties = Mapping[str, str]
"""
Desired configuration, as an ordered mapping of property names to values.
"""

ROOT = "configuration"
PROPERTY = "property"
NAME = "name"
VALUE = "value"

# Declaration, processing instructions, comments and doctype before the root element.
_PROLOG = re.compile(r"\A(?:\s+|<\?.*?\?>|<!--.*?-->|<!DOCTYPE[^>]*>)*", re.DOTALL)

_DEFAULT_INDENT = "\n  "


class ConfigDocument:
    """
    In-memory copy of a property list file.
    """

    def __init__(self, root: ElementTree.Element, path: Optional[str] = None, prolog: str = ""):
        if root.tag != ROOT:
            raise ValueError("Expected <{}> root element, got <{}>".format(ROOT, root.tag))
        self.root = root
        self.path = path
        self.prolog = prolog

    def __repr__(self):
        return "<{}: {!r}>".format(self.__class__.__name__, self.path)

    def properties(self) -> Iterator[Tuple[ElementTree.Element, str]]:
        """
        Iterate over `<property>` elements in document order, paired with their names.
        """
        for elem in self.root:
            if elem.tag != PROPERTY:
                continue
            name = elem.find(NAME)
            if name is None:
                continue
            yield elem, (name.text or "").strip()

    def find(self, name: str) -> Optional[ElementTree.Element]:
        """
        Return the first `<property>` element with the given name, if any.
        """
        for elem, key in self.properties():
            if key == name:
                return elem
        return None

    def get(self, name: str) -> str:
        """
        Look up the value of a property, raising `KeyError` if it isn't set.
        """
        elem = self.find(name)
        if elem is None:
            raise KeyError(name)
        value = elem.find(VALUE)
        return "" if value is None else (value.text or "")

    def names(self) -> List[str]:
        return [key for _, key in self.properties()]

    def items(self) -> List[Tuple[str, str]]:
        """
        All (name, value) pairs in document order, including duplicates.
        """
        pairs = []
        for elem, key in self.properties():
            value = elem.find(VALUE)
            pairs.append((key, "" if value is None else (value.text or "")))
        return pairs

    def serialize(self) -> str:
        body = ElementTree.tostring(self.root, encoding="unicode")
        prolog = self.prolog
        if prolog and not prolog.endswith("\n"):
            prolog += "\n"
        return "{}{}\n".format(prolog, body)


def parse(text: str, path: Optional[str] = None) -> ConfigDocument:
    """
    Build a document from the contents of a property list file.
    """
    prolog = _PROLOG.match(text).group(0)
    builder = ElementTree.TreeBuilder(insert_comments=True, insert_pis=True)
    parser = ElementTree.XMLParser(target=builder)
    # Feed the root element only, as the builder can't hold nodes outside of it.
    parser.feed(text[len(prolog):])
    return ConfigDocument(parser.close(), path, prolog.strip())


def load(path: str) -> ConfigDocument:
    """
    Read a property list file from disk.
    """
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError:
        raise NotFound("Configuration file {!r} does not exist".format(path)) from None
    return parse(text, path)


def _indent(root: ElementTree.Element) -> str:
    # Reuse the whitespace ahead of the first child, falling back to two spaces.
    if root.text and not root.text.strip() and "\n" in root.text:
        return root.text
    return _DEFAULT_INDENT


def _append(document: ConfigDocument, name: str, value: str) -> None:
    root = document.root
    pad = _indent(root)
    elem = ElementTree.Element(PROPERTY)
    elem.text = pad + "  "
    ElementTree.SubElement(elem, NAME).text = name
    ElementTree.SubElement(elem, VALUE).text = value
    elem[0].tail = pad + "  "
    elem[1].tail = pad
    children = list(root)
    if children:
        last = children[-1]
        elem.tail = last.tail
        last.tail = pad
    else:
        root.text = pad
        elem.tail = "\n"
    root.append(elem)


def upsert(document: ConfigDocument, properties: Properties) -> Result[None]:
    """
    Merge desired properties into a document.

    The first property matching each key has its value replaced in place; keys without a matching
    property are appended to the end of the document.  Properties not named in `properties`, and
    any later duplicates of a matching name, are left untouched.

    Names are matched case-sensitively against the text of each `<name>` element with surrounding
    whitespace removed, so a name wrapped onto its own indented line still matches.
    """
    changed = False
    for name, value in properties.items():
        elem = document.find(name)
        if elem is None:
            _append(document, name, value)
            LOG.debug("Added property: %r = %r", name, value)
            changed = True
            continue
        value_elem = elem.find(VALUE)
        if value_elem is None:
            value_elem = ElementTree.SubElement(elem, VALUE)
        if (value_elem.text or "") == value:
            continue
        LOG.debug("Updated property: %r = %r (was %r)", name, value, value_elem.text)
        value_elem.text = value
        changed = True
    return Result(State.success if changed else State.unchanged)


def save(document: ConfigDocument, path: Optional[str] = None) -> Result[None]:
    """
    Write a document back to disk, replacing the file in a single rename.
    """
    path = path or document.path
    if not path:
        raise ValueError("No path to save {!r} to".format(document))
    folder = os.path.dirname(os.path.abspath(path))
    fd, temp = tempfile.mkstemp(dir=folder, prefix=".{}.".format(os.path.basename(path)))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(document.serialize())
            f.flush()
            os.fsync(f.fileno())
        if os.path.exists(path):
            shutil.copymode(path, temp)
        os.replace(temp, path)
    except BaseException:
        os.unlink(temp)
        raise
    LOG.debug("Saved configuration: %r", path)
    return Result(State.success)


@Result.collect
def reconcile(path: str, properties: Properties) -> Collect[ConfigDocument]:
    """
    Load a configuration file, apply properties to it, and save it only if anything changed.
    """
    document = load(path)
    res_upsert = yield from upsert(document, properties)
    if res_upsert:
        yield save(document)
    return document
