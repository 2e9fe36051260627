import re
from collections import defaultdict

from loguru import logger

from codeqa.core.models import CHUNKABLE_TYPES, Chunk, ChunkMetadata, CodeGraph, CodeNode

_JS_CALL = re.compile(r"^\s*(async\s+)?[a-zA-Z_]\w*\s*\(")
_JAVA_DECL = re.compile(r"^\s*(public|private|protected)?\s*(static)?\s*\w+\s+\w+\s*\(")

# Signature anchors are only searched near the top of a symbol
_SIGNATURE_SCAN_LINES = 5


def chunk_id(file_path: str, parent_name: str | None, name: str) -> str:
    """Deterministic id: normalized path, optional parent symbol, symbol name."""
    parts = [file_path.replace("\\", "/")]
    if parent_name:
        parts.append(parent_name)
    parts.append(name)
    return "::".join(parts)


def _cut_before_brace(line: str) -> str:
    brace = line.find("{")
    return line[:brace].strip() if brace > 0 else line.strip()


def extract_signature(node: CodeNode) -> str:
    """Best-effort one-line signature for a symbol."""
    if not node.source_code:
        return node.label

    lines = node.source_code.split("\n")

    if node.language == "python":
        for line in lines:
            stripped = line.strip()
            if stripped.startswith(("def ", "async def ")):
                # The colon closing the definition comes after the parameter list
                colon = stripped.find(":", max(stripped.rfind(")"), 0))
                return stripped[: colon + 1] if colon > 0 else stripped

    elif node.language in ("typescript", "javascript"):
        for line in lines[:_SIGNATURE_SCAN_LINES]:
            if "function " in line or "=>" in line or _JS_CALL.match(line):
                return _cut_before_brace(line)

    elif node.language == "java":
        for line in lines[:_SIGNATURE_SCAN_LINES]:
            if _JAVA_DECL.match(line):
                return _cut_before_brace(line)

    return next((line.strip() for line in lines if line.strip()), node.label)


class CodeGraphChunker:
    """
    Turns analyzer symbols into retrievable chunks.
    Functions, methods, components and interfaces keep their full source;
    classes carry their own source plus a roster of method signatures.
    Implements the IChunker protocol.
    """

    def __init__(self, min_source_chars: int = 10) -> None:
        self.min_source_chars = min_source_chars

    def chunk(self, graph: CodeGraph) -> list[Chunk]:
        nodes_by_id = {node.id: node for node in graph.nodes}
        children: dict[str, list[CodeNode]] = defaultdict(list)
        for node in graph.nodes:
            if node.parent_id:
                children[node.parent_id].append(node)

        chunks: list[Chunk] = []
        seen_ids: set[str] = set()
        for node in graph.nodes:
            if len(node.source_code.strip()) < self.min_source_chars:
                continue
            if node.type not in CHUNKABLE_TYPES:
                continue

            parent = nodes_by_id.get(node.parent_id) if node.parent_id else None
            chunk = self._node_to_chunk(node, parent, children.get(node.id, []))

            if chunk.id in seen_ids:
                logger.debug("Duplicate chunk id {}, the later symbol wins on upsert", chunk.id)
            seen_ids.add(chunk.id)
            chunks.append(chunk)

        return chunks

    def _node_to_chunk(
        self, node: CodeNode, parent: CodeNode | None, children: list[CodeNode]
    ) -> Chunk:
        docstring = node.documentation.summary if node.documentation else ""

        content = f"/**\n * {docstring}\n */\n" if docstring else ""
        if node.type == "class":
            content += self._class_content(node, children)
        else:
            content += node.source_code

        parent_name = parent.label if parent else None
        return Chunk(
            id=chunk_id(node.file_path, parent_name, node.label),
            content=content.strip(),
            metadata=ChunkMetadata(
                file_path=node.file_path,
                start_line=node.start_line,
                end_line=node.end_line,
                type=node.type,
                name=node.label,
                language=node.language,
                parent_name=parent_name,
                docstring=docstring or None,
                signature=extract_signature(node),
            ),
        )

    def _class_content(self, node: CodeNode, children: list[CodeNode]) -> str:
        """Class source followed by one signature line per method."""
        content = node.source_code
        methods = [child for child in children if child.type in ("method", "function")]
        if methods:
            content += "\n\n// Methods:\n"
            for method in methods:
                summary = method.documentation.summary if method.documentation else ""
                if summary:
                    content += f"// {summary}\n"
                content += f"{extract_signature(method)}\n"
        return content
