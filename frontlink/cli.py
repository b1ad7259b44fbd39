"""
Command-Line Interface for frontlink.

Each pipeline stage is its own command and can be re-run on its own:

    frontlink scan content/posts
    frontlink embed
    frontlink calc
    frontlink write content/posts
"""

import logging
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .components.summarizers import MODEL_CHOICES, SUMMARY_PROMPTS, TAGLINE_PROMPTS
from .components.writer import BACKUP_SUFFIX, MetadataWriter
from .core.factory import CHUNKER_REGISTRY, EMBEDDER_REGISTRY, SUMMARIZER_REGISTRY
from .core.pipeline import (
    interruptible,
    run_calc,
    run_embed,
    run_scan,
    run_summarize,
    run_write,
)
from .utils.config import DEFAULT_CONFIG_FILE, load_config, resolve_store_path
from .utils.config_models import AppConfig, ComponentConfig
from .utils.data_models import StageReport
from .utils.errors import StoreError
from .utils.store import SQLiteStore


logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = typer.Typer(help="Link related documents through their front matter.")

EXIT_INTERRUPTED = 130

ModelChoice = Enum("ModelChoice", {name: name for name in MODEL_CHOICES}, type=str)

DEFAULT_YAML_CONTENT = """# frontlink configuration
source:
  path: ./content/posts
  glob_patterns:
    - "**/*.md"
  include_drafts: false
  prune: true

store:
  path: ~/.config/frontlink/frontlink.db

chunker:
  type: recursive_character
  config:
    chunk_size: 2000
    chunk_overlap: 0

embedder:
  type: openai
  config:
    model_name: text-embedding-3-small

summarizer:
  type: openai
  config:
    model_name: gpt-4o

service:
  batch_size: 16
  max_workers: 4
  max_retries: 3
  requests_per_minute: 500

embedding:
  prepend_title: false

similarity:
  max_related: 3
  min_similarity: 0.4

writer:
  backup: true
  overwrite: true

summary:
  min_length: 1000
"""


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Annotated[
        Optional[str],
        typer.Option("--config", "-c", help=f"Path to the YAML configuration file (default: ./{DEFAULT_CONFIG_FILE})."),
    ] = None,
    db_path: Annotated[
        Optional[str], typer.Option("--db-path", help="Location of the store database.")
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log debug messages.")] = False,
):
    """Find related documents and record them in each document's front matter."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    ctx.obj = {"config_path": config_path, "db_path": db_path}


def _config(ctx: typer.Context) -> AppConfig:
    return load_config(ctx.obj["config_path"])


def _open_store(ctx: typer.Context, config: AppConfig) -> SQLiteStore:
    path = resolve_store_path(config, ctx.obj["db_path"])
    try:
        return SQLiteStore(path)
    except StoreError as e:
        logger.error(f"{e}")
        raise typer.Exit(code=1)


def _root(directory: Optional[Path], config: AppConfig) -> Path:
    if directory is not None:
        return directory
    if config.source.path:
        return Path(config.source.path).expanduser()
    logger.error("No directory given and 'source.path' is not set in the configuration.")
    raise typer.Exit(code=1)


def _writer(config: AppConfig, dry_run: bool, no_backup: bool, keep_existing: bool) -> MetadataWriter:
    return MetadataWriter(
        backup=config.writer.backup and not no_backup,
        dry_run=dry_run,
        overwrite=config.writer.overwrite and not keep_existing,
    )


@contextmanager
def _stage():
    """Maps interrupts and fatal errors onto exit codes."""
    try:
        with interruptible():
            yield
    except KeyboardInterrupt:
        logger.warning("Interrupted.")
        raise typer.Exit(code=EXIT_INTERRUPTED)
    except (FileNotFoundError, ValueError, StoreError) as e:
        logger.error(f"{e}")
        raise typer.Exit(code=1)


def _finish(report: StageReport):
    typer.echo(report.summary(), err=True)
    if report.interrupted:
        raise typer.Exit(code=EXIT_INTERRUPTED)


DirectoryArgument = Annotated[
    Optional[Path],
    typer.Argument(help="Directory containing the documents (default: source.path from the config)."),
]
DryRunOption = Annotated[
    bool, typer.Option("--dry-run", help="Print the updated documents instead of writing them.")
]
NoBackupOption = Annotated[
    bool, typer.Option("--no-backup", help=f"Don't keep a '{BACKUP_SUFFIX}' copy of modified files.")
]
KeepExistingOption = Annotated[
    bool, typer.Option("--keep-existing", help="Leave documents that already have the field alone.")
]


@app.command()
def scan(ctx: typer.Context, directory: DirectoryArgument = None):
    """Loads new and changed documents into the store."""
    config = _config(ctx)
    root = _root(directory, config)
    with _stage(), _open_store(ctx, config) as store:
        report = run_scan(config, store, root)
    _finish(report)


@app.command()
def embed(
    ctx: typer.Context,
    batch_size: Annotated[
        Optional[int],
        typer.Option("--batch-size", min=1, max=2048, help="Chunks per embedding request."),
    ] = None,
):
    """Computes embeddings for chunks that don't have one yet."""
    config = _config(ctx)
    if batch_size is not None:
        config.service.batch_size = batch_size

    def progress(done: int, total: int):
        logger.info(f"Embedded {done}/{total} chunks")

    with _stage(), _open_store(ctx, config) as store:
        report = run_embed(config, store, progress_callback=progress)
    _finish(report)


@app.command()
def calc(
    ctx: typer.Context,
    max_related: Annotated[
        Optional[int], typer.Option("--max-related", min=1, help="Related documents kept per document.")
    ] = None,
    min_similarity: Annotated[
        Optional[float],
        typer.Option("--min-similarity", min=0.0, max=1.0, help="Minimum cosine similarity."),
    ] = None,
):
    """Recomputes document similarity from the stored embeddings."""
    config = _config(ctx)
    if max_related is not None:
        config.similarity.max_related = max_related
    if min_similarity is not None:
        config.similarity.min_similarity = min_similarity

    with _stage(), _open_store(ctx, config) as store:
        report = run_calc(config, store)
    _finish(report)


@app.command()
def write(
    ctx: typer.Context,
    directory: DirectoryArgument = None,
    max_related: Annotated[
        Optional[int], typer.Option("--max-related", min=1, help="Related documents written per document.")
    ] = None,
    min_similarity: Annotated[
        Optional[float],
        typer.Option("--min-similarity", min=0.0, max=1.0, help="Minimum cosine similarity."),
    ] = None,
    dry_run: DryRunOption = False,
    no_backup: NoBackupOption = False,
    keep_existing: KeepExistingOption = False,
):
    """Writes each document's related documents into its front matter."""
    config = _config(ctx)
    root = _root(directory, config)
    if max_related is not None:
        config.similarity.max_related = max_related
    if min_similarity is not None:
        config.similarity.min_similarity = min_similarity

    writer = _writer(config, dry_run, no_backup, keep_existing)
    with _stage(), _open_store(ctx, config) as store:
        report = run_write(config, store, root, writer)
    _finish(report)


def _apply_model(config: AppConfig, model: Optional[ModelChoice]):
    if model is None:
        return
    summarizer_type, model_name = MODEL_CHOICES[model.value]
    if config.summarizer.type == summarizer_type:
        config.summarizer.config = {**config.summarizer.config, "model_name": model_name}
    else:
        config.summarizer = ComponentConfig(type=summarizer_type, config={"model_name": model_name})


def _summary_command(ctx, directory, model, force, dry_run, no_backup, keep_existing, field, prompts):
    config = _config(ctx)
    root = _root(directory, config)
    _apply_model(config, model)
    writer = _writer(config, dry_run, no_backup, keep_existing)
    with _stage(), _open_store(ctx, config) as store:
        report = run_summarize(
            config, store, root, writer, field=field, prompts=prompts, force=force
        )
    _finish(report)


ModelOption = Annotated[
    Optional[ModelChoice], typer.Option("--model", help="Chat model to use.")
]
ForceOption = Annotated[
    bool, typer.Option("--force", help="Regenerate even if the document already has the field.")
]


@app.command()
def summarize(
    ctx: typer.Context,
    directory: DirectoryArgument = None,
    model: ModelOption = None,
    force: ForceOption = False,
    dry_run: DryRunOption = False,
    no_backup: NoBackupOption = False,
    keep_existing: KeepExistingOption = False,
):
    """Writes a short first-person synopsis into each document's front matter."""
    _summary_command(
        ctx, directory, model, force, dry_run, no_backup, keep_existing, "synopsis", SUMMARY_PROMPTS
    )


@app.command()
def tagline(
    ctx: typer.Context,
    directory: DirectoryArgument = None,
    model: ModelOption = None,
    force: ForceOption = False,
    dry_run: DryRunOption = False,
    no_backup: NoBackupOption = False,
    keep_existing: KeepExistingOption = False,
):
    """Writes a one-sentence tagline into each document's front matter."""
    _summary_command(
        ctx, directory, model, force, dry_run, no_backup, keep_existing, "tagline", TAGLINE_PROMPTS
    )


@app.command()
def status(ctx: typer.Context):
    """Shows what the store currently holds."""
    config = _config(ctx)
    path = resolve_store_path(config, ctx.obj["db_path"])
    if not path.exists():
        logger.warning(f"No store found at '{path}'. Run 'frontlink scan' first.")
        return

    with _open_store(ctx, config) as store:
        stats = store.stats()

    print(f"\n--- Store: {path} ---")
    print(f"  Documents: {stats['documents']} ({stats['drafts']} drafts)")
    print(f"  Chunks:    {stats['chunks']}")
    print(f"  Synopses:  {stats['synopses']}")
    for title, counts in (("Embeddings", stats["embeddings"]), ("Similarity edges", stats["edges"])):
        print(f"\n--- {title} ---")
        if not counts:
            print("  (none)")
        for model, count in counts.items():
            print(f"  - {model}: {count}")
    print("---------------------")


@app.command()
def init():
    """Creates a default frontlink.yaml in the current directory."""
    logger.info("Initializing new frontlink project...")
    config_file = Path(DEFAULT_CONFIG_FILE)
    if config_file.exists():
        logger.warning(f"'{DEFAULT_CONFIG_FILE}' already exists.")
    else:
        config_file.write_text(DEFAULT_YAML_CONTENT)
        logger.info(f"Created default '{DEFAULT_CONFIG_FILE}'.")

    logger.info("Project initialized.")


@app.command()
def clean(
    ctx: typer.Context,
    backups: Annotated[
        Optional[Path],
        typer.Option("--backups", help=f"Also delete '{BACKUP_SUFFIX}' files beneath this directory."),
    ] = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation.")] = False,
):
    """Deletes the store database, and optionally backup files."""
    config = _config(ctx)
    path = resolve_store_path(config, ctx.obj["db_path"])
    logger.info("Starting cleanup...")
    if not yes and not typer.confirm(f"Delete '{path}'?"):
        logger.info("Aborting cleanup.")
        return

    for candidate in (path, Path(f"{path}-journal"), Path(f"{path}-wal"), Path(f"{path}-shm")):
        if candidate.exists():
            candidate.unlink()
            logger.info(f"Deleted {candidate}")

    if backups is not None:
        for backup in sorted(backups.rglob(f"*{BACKUP_SUFFIX}")):
            if backup.is_file():
                backup.unlink()
                logger.info(f"Deleted backup: {backup}")

    logger.info("Cleanup complete.")


@app.command(name="list-components")
def list_components():
    """Lists all available components."""
    logger.info("Listing available components...")

    def print_registry(title, registry):
        print(f"\n--- {title} ---")
        for name in sorted(registry.keys()):
            print(f"  - {name}")

    print_registry("Chunkers", CHUNKER_REGISTRY)
    print_registry("Embedders", EMBEDDER_REGISTRY)
    print_registry("Summarizers", SUMMARIZER_REGISTRY)
    print("\n--- Models (--model) ---")
    for name, (summarizer_type, model_name) in MODEL_CHOICES.items():
        print(f"  - {name}: {summarizer_type}/{model_name}")


if __name__ == "__main__":
    app()
