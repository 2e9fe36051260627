import os
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError

from codeqa.config import Settings, load_settings
from codeqa.core.context import build_context
from codeqa.core.errors import IndexingInProgressError
from codeqa.core.models import CodeGraph
from codeqa.logger import configure_logger

app = typer.Typer(
    help="codeqa: Hybrid code search and question answering over a code graph",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    if value:
        from codeqa import __version__

        typer.echo(f"codeqa version: {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config_file: Annotated[
        str, typer.Option("--config-file", "-c", help="Path to config.yaml file.")
    ] = "config.yaml",
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            help="Show the version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """codeqa: Hybrid retrieval and answer synthesis for codebases."""
    # Export to environment so uvicorn subprocesses (in API mode) inherit it
    os.environ["CODEQA_CONFIG_FILE"] = config_file

    settings = load_settings(config_file)
    configure_logger(settings.log_level, settings.log_serialize)
    ctx.obj = settings


def _settings(ctx: typer.Context) -> Settings:
    if isinstance(ctx.obj, Settings):
        return ctx.obj
    return load_settings()


@app.command()
def index(
    ctx: typer.Context,
    graph_json: Annotated[
        Path, typer.Argument(help="Code graph JSON file produced by the analyzer.")
    ],
) -> None:
    """Chunks a code graph and rebuilds the search index from it."""
    if not graph_json.is_file():
        typer.echo(f"Error: '{graph_json}' is not a file.", err=True)
        raise typer.Exit(code=1)

    try:
        graph = CodeGraph.model_validate_json(graph_json.read_bytes())
    except ValidationError as e:
        typer.echo(f"Error: '{graph_json}' is not a valid code graph: {e}", err=True)
        raise typer.Exit(code=1) from e

    with build_context(_settings(ctx)) as context:
        try:
            report = context.index_graph(graph)
        except IndexingInProgressError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(code=1) from e

    typer.echo(f"Indexed {report.chunks} chunks ({report.vector_documents} vectors).")
    typer.echo(f"Search path: {'vector' if report.embedding_scheme else 'keyword only'}")
    if report.embedding_scheme:
        typer.echo(f"Embedding scheme: {report.embedding_scheme}")


@app.command()
def search(
    ctx: typer.Context,
    query: Annotated[str, typer.Argument(help="The text to search for within the indexed code.")],
    limit: Annotated[
        int, typer.Option("--limit", "-l", help="Maximum number of search results to return.")
    ] = 5,
) -> None:
    """Searches the index using hybrid retrieval (vector, then keyword)."""
    with build_context(_settings(ctx)) as context:
        outcome = context.search_with_path(query, limit)
        context.retriever.print_results(outcome)


@app.command()
def ask(
    ctx: typer.Context,
    question: Annotated[str, typer.Argument(help="A natural-language question about the code.")],
) -> None:
    """Answers a question from the indexed code."""
    with build_context(_settings(ctx)) as context:
        result = context.answer(question)

    typer.echo(result.answer)
    typer.echo("")
    typer.echo(
        f"Confidence: {result.confidence} | AI generated: {result.ai_generated} | Path: {result.path}"
    )
    if result.sources:
        typer.echo("Sources:")
        for source in result.sources:
            typer.echo(
                f"  - {source.name} ({source.type}) {source.file_path}:"
                f"{source.start_line}-{source.end_line} [{source.relevance_score:.2f}]"
            )


@app.command()
def stats(ctx: typer.Context) -> None:
    """Shows index size, embedding scheme and active capabilities."""
    with build_context(_settings(ctx)) as context:
        report = context.stats()

    typer.echo(f"Documents:        {report.document_count}")
    typer.echo(f"Vectors:          {report.vector_count}")
    typer.echo(f"Indexed words:    {report.indexed_words}")
    typer.echo(f"Embedding scheme: {report.embedding_scheme or 'none'}")
    typer.echo(f"Indexed at:       {report.indexed_at.isoformat() if report.indexed_at else 'never'}")
    typer.echo(f"Vector backend:   {report.vector_backend}")
    caps = report.capabilities
    typer.echo(f"Capabilities:     embedding={caps.embedding} rerank={caps.rerank} llm={caps.llm}")


@app.command()
def clear(
    ctx: typer.Context,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Bypass confirmation prompt."),
    ] = False,
) -> None:
    """Deletes the index and all persisted artifacts."""
    settings = _settings(ctx)
    if not force:
        typer.confirm(
            f"Are you sure you want to delete the index in '{settings.data_dir}'? This will erase all existing data.",
            abort=True,
        )

    with build_context(settings, load=False) as context:
        context.clear()
    typer.echo("Index cleared.")


@app.command()
def serve(
    host: Annotated[
        str, typer.Option("--host", "-h", help="Host to bind the API server to.")
    ] = "127.0.0.1",
    port: Annotated[
        int, typer.Option("--port", "-p", help="Port to bind the API server to.")
    ] = 8000,
    reload: Annotated[
        bool, typer.Option("--reload", help="Enable auto-reload for development.")
    ] = False,
) -> None:
    """Starts the asynchronous FastAPI server."""
    import uvicorn

    typer.echo(f"Starting codeqa API server at http://{host}:{port}...")
    uvicorn.run("codeqa.api.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
