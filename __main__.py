"""CLI entry point for embedcore.

Inspect the model catalog and this device, fetch models, and embed or
search text from the command line.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from tqdm import tqdm

from embedcore import api
from embedcore.catalog import ModelCategory
from embedcore.config import EnvVar, get_environment
from embedcore.core import get_logger, setup_logging
from embedcore.engine import EngineConfig
from embedcore.errors import EmbedCoreError

# Load environment variables from .env file
load_dotenv()

logger = get_logger("cli")

CATEGORY_CHOICES = [c.value for c in ModelCategory]


# =============================================================================
# Catalog & Device Commands
# =============================================================================


def cmd_models(args: argparse.Namespace) -> int:
    """Handle the models command."""
    from embedcore.catalog import DEFAULT_CATALOG

    for descriptor in api.list_models(args.category):
        requirement = DEFAULT_CATALOG.get_requirement(descriptor.id)
        needs = (
            f"{requirement.min_memory_gb:g}GB+ RAM, {requirement.tier.value} tier"
            if requirement
            else "no requirements"
        )
        print(
            f"{descriptor.id:<14} {descriptor.category.value:<11} "
            f"dim={descriptor.dimension:<5} {needs}"
        )
    return 0


def cmd_device(_args: argparse.Namespace) -> int:
    """Handle the device command."""
    caps = api.detect_device_capabilities()
    memory_note = "" if caps.memory.measured else " (estimated)"
    cpu_note = "" if caps.cpu.measured else " (estimated)"

    print("=== Device Capabilities ===")
    print(f"Platform: {caps.platform.value}")
    print(f"Tier: {caps.tier.value}")
    print(f"Memory: {caps.memory_gb:g}GB{memory_note}")
    print(f"CPU Cores: {caps.cpu_cores}{cpu_note}")
    print(f"GPU: {caps.gpu.summary}")
    print(f"Portable runtime: {'Yes' if caps.portable_runtime else 'No'}")
    print(f"Native runtime: {'Yes' if caps.native_runtime else 'No'}")
    return 0


def cmd_recommend(args: argparse.Namespace) -> int:
    """Handle the recommend command."""
    descriptor = api.recommend_model(args.category)
    if descriptor is None:
        logger.error("No compatible model for this device")
        return 1
    print(f"{descriptor.id} ({descriptor.name})")
    return 0


def cmd_engines(_args: argparse.Namespace) -> int:
    """Handle the engines command."""
    for detection in api.detect_engines():
        status = "available" if detection.available else "unavailable"
        print(f"{detection.engine.value:<22} {status:<12} {detection.reason}")
    return 0


def cmd_download(args: argparse.Namespace) -> int:
    """Handle the download command."""
    from embedcore.loaders import get_model_manager

    try:
        path = get_model_manager().download(args.model, force=args.force)
    except (ValueError, ImportError, OSError) as e:
        logger.error(f"Download failed: {e}")
        return 1
    logger.info(f"Success! Model '{args.model}' is ready at {path}")
    return 0


# =============================================================================
# Embedding Commands
# =============================================================================


def _engine_config(args: argparse.Namespace) -> EngineConfig:
    return EngineConfig.from_environment(
        model_id=args.model,
        strategy=args.strategy,
        model_path=getattr(args, "model_path", None),
    )


async def _embed(args: argparse.Namespace) -> list[float]:
    try:
        await api.initialize_engine(_engine_config(args))
        result = await api.generate_embedding(args.text)
        return result.to_list()
    finally:
        await api.dispose_engine()


def cmd_embed(args: argparse.Namespace) -> int:
    """Handle the embed command."""
    try:
        vector = asyncio.run(_embed(args))
    except EmbedCoreError as e:
        logger.error(f"Embedding failed: {e}")
        return 1

    print(json.dumps(vector))
    return 0


class SearchDocument(BaseModel):
    """One line of a search data file.

    Attributes:
        id: Record identifier. Numbers are accepted and kept as text.
        text: Text embedded for the record.
        metadata: Free-form metadata attached to the embedding.
    """

    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)


def load_documents(path: Path) -> list[SearchDocument]:
    """Read JSONL search documents. Blank lines are skipped.

    Raises:
        ValueError: If a line is not a valid document.
    """
    documents = []
    with open(path, encoding="utf-8") as f:
        for line_number, line in enumerate(f, 1):
            if not line.strip():
                continue
            try:
                documents.append(SearchDocument.model_validate_json(line))
            except PydanticValidationError as e:
                raise ValueError(f"line {line_number}: {e}") from e
    return documents


async def _search(args: argparse.Namespace, documents: list[SearchDocument]):
    from embedcore.search import InMemoryStorage, StoredEmbedding

    try:
        await api.initialize_engine(_engine_config(args))

        storage = InMemoryStorage()
        for document in tqdm(documents, desc="Embedding", unit="doc", ncols=80):
            result = await api.generate_embedding(document.text)
            storage.add_record(document.id, document.model_dump())
            storage.add_embedding(
                StoredEmbedding(
                    id=document.id,
                    record_id=document.id,
                    vector=result.vector,
                    metadata=document.metadata,
                )
            )
        logger.info(f"Indexed {len(storage)} documents from {args.data}")

        return await api.semantic_search(
            storage, args.query, limit=args.k, min_similarity=args.min_similarity
        )
    finally:
        await api.dispose_engine()


def cmd_search(args: argparse.Namespace) -> int:
    """Handle the search command."""
    try:
        documents = load_documents(args.data)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to read {args.data}: {e}")
        return 1

    try:
        results = asyncio.run(_search(args, documents))
    except EmbedCoreError as e:
        logger.error(f"Search failed: {e}")
        return 1

    if not results:
        print("No matches.")
        return 0

    for i, match in enumerate(results, 1):
        text = str(match.record.get("text", ""))[:200]
        print(f"{i}. [score={match.similarity:.4f}] {match.record_id}: {text}")
    return 0


# =============================================================================
# Argument Parsing
# =============================================================================


def _add_engine_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--model",
        "-m",
        type=str,
        default=None,
        help="Catalog model id (default: EMBEDDING_MODEL or all-minilm)",
    )
    parser.add_argument(
        "--strategy",
        "-s",
        type=str,
        default=None,
        help="Engine strategy: auto, primary-only or fallback-only",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="python .",
        description="On-device text embeddings and similarity search",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # models command
    models_parser = subparsers.add_parser("models", help="List catalog models")
    models_parser.add_argument(
        "--category", "-c", choices=CATEGORY_CHOICES, default=None, help="Filter by category"
    )
    models_parser.set_defaults(func=cmd_models)

    # device command
    device_parser = subparsers.add_parser("device", help="Show device capabilities")
    device_parser.set_defaults(func=cmd_device)

    # recommend command
    recommend_parser = subparsers.add_parser(
        "recommend", help="Recommend a model for this device"
    )
    recommend_parser.add_argument(
        "--category",
        "-c",
        choices=CATEGORY_CHOICES,
        default=ModelCategory.EMBEDDING.value,
        help="Model category (default: embedding)",
    )
    recommend_parser.set_defaults(func=cmd_recommend)

    # engines command
    engines_parser = subparsers.add_parser("engines", help="Show available engines")
    engines_parser.set_defaults(func=cmd_engines)

    # download command
    download_parser = subparsers.add_parser(
        "download", help="Download a model for the portable engine"
    )
    download_parser.add_argument("model", type=str, help="Catalog model id")
    download_parser.add_argument(
        "--force", "-f", action="store_true", help="Re-download even if present"
    )
    download_parser.set_defaults(func=cmd_download)

    # embed command
    embed_parser = subparsers.add_parser("embed", help="Embed text and print the vector")
    embed_parser.add_argument("text", type=str, help="Text to embed")
    _add_engine_arguments(embed_parser)
    embed_parser.add_argument(
        "--model-path",
        type=Path,
        default=None,
        help="Local ONNX model directory for the native engine",
    )
    embed_parser.set_defaults(func=cmd_embed)

    # search command
    search_parser = subparsers.add_parser(
        "search", help="Semantic search over a JSONL file"
    )
    search_parser.add_argument("query", type=str, help="Search query")
    search_parser.add_argument(
        "--data",
        "-d",
        type=Path,
        required=True,
        help="JSONL file with one {id, text, metadata} object per line",
    )
    search_parser.add_argument(
        "--k", "-k", type=int, default=5, help="Number of results (default: 5)"
    )
    search_parser.add_argument(
        "--min-similarity",
        type=float,
        default=0.5,
        help="Per-embedding similarity threshold (default: 0.5)",
    )
    _add_engine_arguments(search_parser)
    search_parser.set_defaults(func=cmd_search)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(get_environment(EnvVar.EMBEDCORE_LOG_LEVEL))
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
