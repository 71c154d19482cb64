"""Java source parsing with tree-sitter.

Each file yields its package, imports and declared types. Types carry the
simple type names they reference; turning those into graph edges needs
every file of the repository, so that happens in the indexer.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional

import tree_sitter_java
from tree_sitter import Language, Node, Parser

from autoflow.schema import CandidateKind

JAVA_LANGUAGE = Language(tree_sitter_java.language())

TYPE_DECLARATIONS = {
    "class_declaration": "class",
    "interface_declaration": "interface",
    "enum_declaration": "enum",
    "record_declaration": "record",
    "annotation_type_declaration": "annotation",
}
METHOD_DECLARATIONS = {"method_declaration", "constructor_declaration"}

# Package segments that name a layer rather than a business domain
LAYER_SEGMENTS = {
    "api", "config", "controller", "controllers", "domain", "dto", "entity", "entities", "impl",
    "internal", "model", "models", "repository", "repositories", "rest", "service", "services",
    "util", "utils", "web",
}

SUMMARY_CHARS = 200
_WHITESPACE = re.compile(r"\s+")


@dataclass
class ParsedMember:
    name: str
    kind: CandidateKind
    signature: str = ""


@dataclass
class ParsedType:
    qualified_name: str
    kind: str
    summary: str = ""
    references: set[str] = field(default_factory=set)
    members: list[ParsedMember] = field(default_factory=list)


@dataclass
class ParsedSource:
    """Declarations found in one source file."""

    path: str
    package: str = ""
    imports: dict[str, str] = field(default_factory=dict)  # simple name -> qualified name
    types: list[ParsedType] = field(default_factory=list)
    error: Optional[str] = None

    def resolve(self, simple_name: str) -> str:
        """Qualified name a simple type name refers to from this file."""
        if simple_name in self.imports:
            return self.imports[simple_name]
        return f"{self.package}.{simple_name}" if self.package else simple_name


def domain_from_package(package: str) -> Optional[str]:
    """Business domain of a package: its last segment that is not a layer name.

    ``com.acme.order.service`` -> ``order``
    """
    for segment in reversed(package.split(".")):
        if segment and segment.lower() not in LAYER_SEGMENTS:
            return segment.lower()
    return None


def _text(node: Optional[Node]) -> str:
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def _collapse(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def _header(node: Node) -> str:
    """Declaration text up to its body, on one line."""
    body = node.child_by_field_name("body")
    end = body.start_byte if body is not None else node.end_byte
    header = node.text[: end - node.start_byte].decode("utf-8", errors="replace")
    return _collapse(header)[:SUMMARY_CHARS]


def _javadoc(node: Node) -> str:
    """First sentence of the doc comment right before a declaration."""
    previous = node.prev_named_sibling
    if previous is None or "comment" not in previous.type:
        return ""
    text = _text(previous)
    if not text.startswith("/**"):
        return ""
    lines = [line.strip().lstrip("*").strip() for line in text[3:-2].splitlines()]
    body = _collapse(" ".join(line for line in lines if line and not line.startswith("@")))
    return body.split(". ")[0].rstrip(".")[:SUMMARY_CHARS]


def _descendants(node: Node, node_type: str) -> Iterator[Node]:
    stack = list(node.named_children)
    while stack:
        current = stack.pop()
        if current.type == node_type:
            yield current
        stack.extend(current.named_children)


class JavaSourceParser:
    """Extract packages, imports, types and members from Java sources."""

    def parse(self, source: bytes, path: str) -> ParsedSource:
        # Parsers are not shared between threads; one per call is cheap
        tree = Parser(JAVA_LANGUAGE).parse(source)
        root = tree.root_node
        parsed = ParsedSource(path=path)

        for node in root.named_children:
            if node.type == "package_declaration":
                parsed.package = _collapse(_text(node).removeprefix("package").rstrip(";"))
            elif node.type == "import_declaration":
                imported = _collapse(_text(node).removeprefix("import").rstrip(";"))
                imported = imported.removeprefix("static ").replace(" ", "")
                if not imported.endswith("*"):
                    parsed.imports[imported.rsplit(".", 1)[-1]] = imported

        for node in root.named_children:
            if node.type in TYPE_DECLARATIONS:
                self._collect_type(node, parsed.package, parsed.types)

        if root.has_error:
            parsed.error = f"{path}: syntax errors, indexed partially"
        return parsed

    def parse_file(self, file_path: Path, root: Path) -> ParsedSource:
        relative = file_path.relative_to(root).as_posix()
        try:
            source = file_path.read_bytes()
        except OSError as e:
            return ParsedSource(path=relative, error=f"{relative}: {e}")
        return self.parse(source, relative)

    def _collect_type(self, node: Node, prefix: str, types: list[ParsedType]) -> None:
        name = _text(node.child_by_field_name("name"))
        if not name:
            return
        qualified_name = f"{prefix}.{name}" if prefix else name
        parsed = ParsedType(
            qualified_name=qualified_name,
            kind=TYPE_DECLARATIONS[node.type],
            summary=_javadoc(node) or _header(node),
            references={_text(ref) for ref in _descendants(node, "type_identifier")} - {name},
        )
        types.append(parsed)

        body = node.child_by_field_name("body")
        if body is None:
            return
        for member in self._body_members(body):
            if member.type in TYPE_DECLARATIONS:
                self._collect_type(member, qualified_name, types)
            elif member.type in METHOD_DECLARATIONS:
                member_name = _text(member.child_by_field_name("name"))
                parsed.members.append(ParsedMember(member_name, CandidateKind.METHOD, _header(member)))
            elif member.type == "field_declaration":
                for declarator in member.children_by_field_name("declarator"):
                    field_name = _text(declarator.child_by_field_name("name"))
                    signature = _collapse(_text(member))[:SUMMARY_CHARS]
                    parsed.members.append(ParsedMember(field_name, CandidateKind.FIELD, signature))

    @staticmethod
    def _body_members(body: Node) -> Iterator[Node]:
        for child in body.named_children:
            # enum constants come first; the remaining members sit in one nested node
            if child.type == "enum_body_declarations":
                yield from child.named_children
            else:
                yield child
