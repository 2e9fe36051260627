"""Pytest configuration and fixtures."""

import pytest
from loguru import logger

from codeqa.core.models import Chunk, ChunkMetadata, CodeGraph, CodeNode, NodeDocumentation


@pytest.fixture
def caplog(caplog):
    """Enable Loguru logging to be captured by pytest's caplog fixture."""
    import logging

    class PropagateHandler(logging.Handler):
        def emit(self, record):
            logging.getLogger(record.name).handle(record)

    handler_id = logger.add(PropagateHandler(), format="{message}")
    yield caplog
    logger.remove(handler_id)


def build_chunk(
    name: str,
    content: str | None = None,
    chunk_type: str = "function",
    file_path: str = "src/app.ts",
    docstring: str | None = None,
    start_line: int = 1,
    end_line: int = 10,
) -> Chunk:
    return Chunk(
        id=f"{file_path}::{name}",
        content=content if content is not None else f"function {name}() {{ return 1; }}",
        metadata=ChunkMetadata(
            file_path=file_path,
            start_line=start_line,
            end_line=end_line,
            type=chunk_type,
            name=name,
            language="typescript",
            docstring=docstring,
        ),
    )


@pytest.fixture
def make_chunk():
    """Factory fixture for chunks with sensible defaults."""
    return build_chunk


@pytest.fixture
def sample_graph():
    """A small analyzer graph: one class with a method, a function, and noise."""
    return CodeGraph(
        nodes=[
            CodeNode(
                id="n1",
                label="parseConfig",
                type="function",
                language="typescript",
                file_path="src/config.ts",
                start_line=1,
                end_line=12,
                source_code="export function parseConfig(raw: string): Config {\n  return JSON.parse(raw);\n}",
                documentation=NodeDocumentation(summary="Parses raw configuration text."),
            ),
            CodeNode(
                id="n2",
                label="ConfigLoader",
                type="class",
                language="typescript",
                file_path="src/loader.ts",
                start_line=1,
                end_line=40,
                source_code="export class ConfigLoader {\n  private cache = new Map();\n}",
            ),
            CodeNode(
                id="n3",
                label="load",
                type="method",
                language="typescript",
                file_path="src/loader.ts",
                start_line=5,
                end_line=20,
                parent_id="n2",
                source_code="async load(path: string) {\n  return readFile(path);\n}",
                documentation=NodeDocumentation(summary="Reads a config file from disk."),
            ),
            CodeNode(
                id="n4",
                label="x",
                type="function",
                language="typescript",
                file_path="src/tiny.ts",
                source_code="f()",
            ),
            CodeNode(
                id="n5",
                label="config.ts",
                type="file",
                language="typescript",
                file_path="src/config.ts",
                source_code="import { readFile } from 'fs';\nexport {};",
            ),
        ],
        edges=[{"source": "n2", "target": "n3", "type": "contains"}],
    )
