"""
Best-effort decoding of S3 XML responses into dicts, lists and strings.

Collections are not represented consistently by S3:

    <ListAllMyBucketsResult>
      <Buckets>
        <Bucket><Name>bucket1</Name></Bucket>
        <Bucket><Name>bucket2</Name></Bucket>
      </Buckets>
    </ListAllMyBucketsResult>

    <ListBucketResult>
      <Name>bucket1</Name>
      <Contents><Key>key1</Key></Contents>
      <Contents><Key>key2</Key></Contents>
    </ListBucketResult>

Known shapes are listed in an `S3Shapes` table. Anything else goes through a fallback that only
turns an element into a list on its second occurrence, so a semantic list holding a single element
is decoded as a dict. Register the shape when you find such a case.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, TypeVar
from xml.parsers import expat

from .errors import S3DecodeError

__all__ = (
    "DEFAULT_SHAPES",
    "S3Shapes",
    "XMLEvent",
    "parse",
    "parse_s3",
    "parse_simple",
)

T = TypeVar("T")

# ("start_element", name, [(attr, value), ...]) | ("end_element", name) | ("characters", text)
type XMLEvent = tuple[Any, ...]


@dataclass(frozen=True)
class S3Shapes:
    """
    Repeating fields of S3-like XML documents.

    `list_fields` holds (root, child) pairs: every `child` directly under the root's scope is
    collected into a list stored under `child`.
    `list_fields_skip` holds (root, parent, child) triples: the `parent` element becomes the list
    itself and the `child` name is dropped.
    """

    list_fields: frozenset[tuple[str, str]] = frozenset()
    list_fields_skip: frozenset[tuple[str, str, str]] = frozenset()

    def register_list_field(self, root: str, child: str) -> S3Shapes:
        return replace(self, list_fields=self.list_fields | {(root, child)})

    def register_list_field_skip(self, root: str, parent: str, child: str) -> S3Shapes:
        return replace(self, list_fields_skip=self.list_fields_skip | {(root, parent, child)})


DEFAULT_SHAPES = S3Shapes(
    list_fields=frozenset({("ListBucketResult", "Contents"), ("ListVersionsResult", "Version")}),
    list_fields_skip=frozenset({("ListAllMyBucketsResult", "Buckets", "Bucket")}),
)


def _forbid_entities(*args):
    raise S3DecodeError("XML entity declarations and external entities are not allowed")


def _forbid_external_dtd(name: str, system_id: str | None, public_id: str | None, has_internal_subset: int):
    if system_id or public_id:
        raise S3DecodeError(f"External DTD {system_id or public_id!r} is not allowed in <!DOCTYPE {name}>")


def parse(xml: str | bytes, state: T, fun: Callable[[XMLEvent, T], T]) -> T:
    """
    Stream `xml` through `fun`, folding events into `state`.

    Entities are never expanded: a document declaring entities, referencing external ones or an
    external DTD raises S3DecodeError.
    """
    parser = expat.ParserCreate()
    parser.buffer_text = True
    parser.ordered_attributes = True
    parser.SetParamEntityParsing(expat.XML_PARAM_ENTITY_PARSING_NEVER)
    parser.EntityDeclHandler = _forbid_entities
    parser.UnparsedEntityDeclHandler = _forbid_entities
    parser.ExternalEntityRefHandler = _forbid_entities
    parser.SkippedEntityHandler = _forbid_entities
    parser.StartDoctypeDeclHandler = _forbid_external_dtd

    def on_start(name: str, attributes: list[str]):
        nonlocal state
        pairs = list(zip(attributes[::2], attributes[1::2]))
        state = fun(("start_element", name, pairs), state)

    def on_end(name: str):
        nonlocal state
        state = fun(("end_element", name), state)

    def on_characters(text: str):
        nonlocal state
        state = fun(("characters", text), state)

    parser.StartElementHandler = on_start
    parser.EndElementHandler = on_end
    parser.CharacterDataHandler = on_characters

    try:
        parser.Parse(xml, True)
    except expat.ExpatError as e:
        raise S3DecodeError(f"Invalid XML: {e}") from e
    return state


@dataclass
class _Frame:
    name: str
    value: Any = None


@dataclass
class _S3State:
    root: str | None = None
    stack: list[_Frame] = field(default_factory=list)
    tree: dict[str, Any] | None = None


def _children(frame: _Frame, child: str) -> dict[str, Any]:
    if frame.value is None or (isinstance(frame.value, str) and not frame.value.strip()):
        frame.value = {}
    if not isinstance(frame.value, dict):
        raise S3DecodeError(f"Unexpected <{child}> inside <{frame.name}> holding {frame.value!r}")
    return frame.value


def parse_s3(xml: str | bytes, shapes: S3Shapes = DEFAULT_SHAPES) -> dict[str, Any]:
    """
    Decode an S3 XML document into `{root_name: value}`.

    Leaf elements decode to strings (None when empty or whitespace-only) and elements with children
    to dicts.
    See the module docstring for how lists are built.

        >>> parse_s3("<ListBucketResult><Name>b</Name><Contents><Key>k</Key></Contents></ListBucketResult>")
        {'ListBucketResult': {'Name': 'b', 'Contents': [{'Key': 'k'}]}}
    """

    def on_event(event: XMLEvent, state: _S3State) -> _S3State:
        match event:
            case ("start_element", name, _attributes):
                state.root = state.root or name
                state.stack.append(_Frame(name))

            case ("end_element", name) if state.stack and state.stack[-1].name == name:
                current = state.stack.pop()
                # Indentation only, e.g. a pretty-printed empty <Buckets>
                if isinstance(current.value, str) and not current.value.strip():
                    current.value = None
                if not state.stack:
                    state.tree = {name: current.value}
                    return state

                parent = state.stack[-1]
                if (state.root, name) in shapes.list_fields:
                    children = _children(parent, name)
                    existing = children.get(name)
                    if isinstance(existing, list):
                        existing.append(current.value)
                    elif name in children:
                        children[name] = [existing, current.value]
                    else:
                        children[name] = [current.value]
                elif (state.root, parent.name, name) in shapes.list_fields_skip:
                    if parent.value is None or (isinstance(parent.value, str) and not parent.value.strip()):
                        parent.value = []
                    if not isinstance(parent.value, list):
                        raise S3DecodeError(f"Unexpected <{name}> inside <{parent.name}> holding {parent.value!r}")
                    parent.value.append(current.value)
                else:
                    children = _children(parent, name)
                    if name not in children:
                        children[name] = current.value
                    elif isinstance(children[name], list):
                        children[name].append(current.value)
                    else:
                        children[name] = [children[name], current.value]

            case ("characters", text) if state.stack:
                current = state.stack[-1]
                if current.value is None:
                    current.value = text
                elif isinstance(current.value, str):
                    current.value += text
                elif text.strip():
                    raise S3DecodeError(f"Unexpected text {text!r} after child elements of <{current.name}>")

            case ("characters", text) if not text.strip():
                pass

            case _:
                stack = [f.name for f in state.stack]
                raise S3DecodeError(f"Unexpected event {event!r} (root: {state.root!r}, stack: {stack!r})")

        return state

    state = parse(xml, _S3State(), on_event)
    if state.tree is None:
        raise S3DecodeError("Empty XML document")
    return state.tree


type SimpleElement = tuple[str, list[tuple[str, str]], list[Any]]


def parse_simple(xml: str | bytes) -> SimpleElement:
    """
    Parse XML into `(name, attributes, content)` tuples, whitespace-only text dropped.

        >>> parse_simple('<items><item id="1"><a>1</a></item></items>')
        ('items', [], [('item', [('id', '1')], [('a', [], ['1'])])])
    """

    def on_event(event: XMLEvent, stack: list):
        match event:
            case ("start_element", name, attributes):
                stack.append((name, attributes, []))
            case ("end_element", name):
                current = stack.pop()
                if stack:
                    stack[-1][2].append(current)
                else:
                    stack.append(current)
            case ("characters", text):
                if text.strip() and stack:
                    stack[-1][2].append(text)
        return stack

    result = parse(xml, [], on_event)
    if not result:
        raise S3DecodeError("Empty XML document")
    return result[0]
