"""Command line access to an Ollama server.

Usage:
    python -m structured_ollama health
    python -m structured_ollama models
    python -m structured_ollama generate --model llama3 --prompt "Name three colors"
    python -m structured_ollama generate --model llama3 --prompt "..." --schema person.json
    python -m structured_ollama generate --model llama3 --prompt "Tell a story" --stream

Connection settings come from the environment (see ``structured_ollama.config``).
``--schema`` takes a JSON-Schema-shaped file (type / properties / required / items).
"""

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

from structured_ollama.client import (
    ClientSettings,
    GenerateRequest,
    OllamaClient,
    format_size,
)
from structured_ollama.schema import SchemaNode
from structured_ollama.shared import OllamaClientError, setup_logging

logger = setup_logging("StructuredOllama_CLI")


class _PrintingCallback:
    """Writes fragments to stdout as they arrive."""

    def __init__(self, out=None):
        self.out = out or sys.stdout
        self.error: Optional[BaseException] = None

    def on_fragment(self, text: str) -> None:
        self.out.write(text)
        self.out.flush()

    def on_complete(self) -> None:
        self.out.write("\n")

    def on_error(self, cause: BaseException) -> None:
        self.error = cause


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="structured_ollama",
        description="Query an Ollama server, optionally asking for schema-shaped JSON",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("health", help="Check that the server is running")
    subparsers.add_parser("models", help="List installed models")

    generate = subparsers.add_parser("generate", help="Generate a completion")
    generate.add_argument("--model", type=str, required=True, help="Model name, e.g. llama3")
    generate.add_argument("--prompt", type=str, required=True, help="Prompt text")
    generate.add_argument(
        "--schema",
        type=Path,
        default=None,
        help="JSON Schema file describing the expected output (non-streaming only)",
    )
    generate.add_argument(
        "--stream",
        action="store_true",
        help="Print fragments as they arrive (ignores --schema)",
    )
    return parser


def main(argv: Optional[list[str]] = None, client: Optional[OllamaClient] = None) -> int:
    """Run one CLI command. Returns the process exit code."""
    args = build_parser().parse_args(argv)

    if client is None:
        # Only the models command needs the list; skip the startup load otherwise
        settings = ClientSettings.from_env()
        client = OllamaClient(settings=_without_startup_load(settings))

    try:
        if args.command == "health":
            return _run_health(client)
        if args.command == "models":
            return _run_models(client)
        return _run_generate(client, args)
    except OllamaClientError as exc:
        logger.error(f"{args.command} failed: {exc}")
        return 1


def _without_startup_load(settings: ClientSettings) -> ClientSettings:
    return replace(settings, model_load_on_startup=False)


def _run_health(client: OllamaClient) -> int:
    healthy = client.is_healthy()
    print("healthy" if healthy else "unhealthy")
    return 0 if healthy else 1


def _run_models(client: OllamaClient) -> int:
    models = client.get_models().models
    if not models:
        print("No models installed")
        return 0
    for model in models:
        parameter_size = model.details.parameter_size if model.details else None
        print(f"{model.name}\t{parameter_size or 'N/A'}\t{format_size(model.size)}")
    return 0


def _load_schema(path: Path) -> SchemaNode:
    """Read a JSON-Schema-shaped file.

    Raises:
        OSError: If the file cannot be read.
        ValueError: On malformed JSON or an invalid schema (pydantic
            ValidationError is a ValueError).
        TypeError: On a schema keyword with a value of the wrong shape.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return SchemaNode.from_dict(data)


def _run_generate(client: OllamaClient, args: argparse.Namespace) -> int:
    schema = None
    if args.schema is not None:
        try:
            schema = _load_schema(args.schema)
        except (OSError, TypeError, ValueError) as exc:
            logger.error(f"Invalid schema file {args.schema}: {exc}")
            return 1

    if args.stream:
        if schema is not None:
            logger.warning("--schema is ignored with --stream")
        callback = _PrintingCallback()
        client.generate_stream(GenerateRequest(model=args.model, prompt=args.prompt), callback)
        if callback.error is not None:
            logger.error(f"Stream failed: {callback.error}")
            return 1
        return 0

    result = client.generate(
        GenerateRequest(model=args.model, prompt=args.prompt, response_schema=schema)
    )
    print(result.response or "")
    if result.json_valid is False:
        logger.warning("Response is not valid JSON")
        return 2
    return 0
