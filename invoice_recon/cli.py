"""
Command-line interface for invoice extraction and reconciliation.
"""

import json
import logging
import mimetypes
from pathlib import Path
from typing import Any, Dict, List

import typer

from invoice_recon.adapter import check_connectivity
from invoice_recon.config import load_settings
from invoice_recon.pipeline import (
    SPREADSHEET_EXTENSIONS, IMAGE_EXTENSIONS, TEXT_EXTENSIONS, EmptyBatchError, UploadedDocument, build_pipeline,
)
from invoice_recon.validator import validate_payload

app = typer.Typer()

SUPPORTED_EXTENSIONS = SPREADSHEET_EXTENSIONS | TEXT_EXTENSIONS | IMAGE_EXTENSIONS | {'.pdf'}


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")):
    """Extract and reconcile products, customers and invoices."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _find_input_files(input_dir: Path) -> List[Path]:
    """Find all supported invoice files in the given directory."""
    return sorted(p for p in input_dir.iterdir() if p.is_file() and p.suffix.lower() in SUPPORTED_EXTENSIONS)


def _load_documents(paths: List[Path]) -> List[UploadedDocument]:
    documents = []
    for path in paths:
        media_type = mimetypes.guess_type(path.name)[0] or ''
        documents.append(UploadedDocument(path.name, media_type, path.read_bytes()))
    return documents


def _print_summary(result: Dict[str, Any]):
    """Print human-readable summary to stdout."""
    print(f"\n{'='*60}")
    print("Summary")
    print(f"{'='*60}")
    print(f"Products: {len(result.get('products', []))}")
    print(f"Customers: {len(result.get('customers', []))}")
    print(f"Invoices: {len(result.get('invoices', []))}")
    if result.get('message'):
        print(f"\n{result['message']}")
    print(f"{'='*60}\n")


def _print_validation(summary: Dict[str, Any]):
    print(f"\n{'='*60}")
    print("Validation")
    print(f"{'='*60}")
    print(f"Total entities: {summary['total_entities']}")
    print(f"Valid: {summary['valid_count']}")
    print(f"Invalid: {summary['invalid_count']}")

    error_counts = summary.get('error_counts') or {}
    if error_counts:
        print("\nTop 3 error types:")
        sorted_errors = sorted(error_counts.items(), key=lambda x: x[1], reverse=True)
        for error_type, count in sorted_errors[:3]:
            print(f"  {error_type}: {count}")
    print(f"{'='*60}\n")


@app.command()
def extract(
    input_dir: str = typer.Option(..., "--input-dir", help="Directory containing invoice files"),
    output: str = typer.Option(..., "--output", help="Output JSON file path"),
    debug: bool = typer.Option(False, "--debug", help="Include the extraction debug trail"),
):
    """
    Extract products, customers and invoices from files in a directory.
    """
    input_path = Path(input_dir)
    output_path = Path(output)

    if not input_path.is_dir():
        typer.echo(f"Error: '{input_dir}' is not a directory", err=True)
        raise typer.Exit(code=1)

    files = _find_input_files(input_path)
    typer.echo(f"Found {len(files)} file(s). Extracting...")

    pipeline = build_pipeline(load_settings())
    try:
        result = pipeline.extract_from_files(_load_documents(files), debug=debug)
    except EmptyBatchError:
        typer.echo(f"Error: No supported files found in '{input_dir}'", err=True)
        raise typer.Exit(code=1)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(result, f, indent=2, ensure_ascii=False)

    typer.echo(f"Output written to: {output_path}")
    _print_summary(result)


@app.command()
def validate(
    input: str = typer.Option(..., "--input", help="Normalized payload JSON file"),
    report: str = typer.Option(..., "--report", help="Output validation report JSON file path"),
):
    """
    Validate a normalized payload from a JSON file.
    """
    input_path = Path(input)
    report_path = Path(report)

    if not input_path.exists():
        typer.echo(f"Error: Input file '{input}' does not exist", err=True)
        raise typer.Exit(code=1)

    try:
        with open(input_path, 'r', encoding='utf-8') as f:
            payload = json.load(f)
    except json.JSONDecodeError as e:
        typer.echo(f"Error: Invalid JSON in '{input}': {e}", err=True)
        raise typer.Exit(code=1)

    if not isinstance(payload, dict):
        typer.echo("Error: Input JSON must be an object with products, customers and invoices", err=True)
        raise typer.Exit(code=1)

    validation_result = validate_payload(payload)

    report_path.parent.mkdir(parents=True, exist_ok=True)
    with open(report_path, 'w', encoding='utf-8') as f:
        json.dump(validation_result, f, indent=2, ensure_ascii=False)

    summary = validation_result['summary']
    _print_validation(summary)
    typer.echo(f"Validation report written to: {report_path}")

    if summary['invalid_count'] > 0:
        typer.echo(f"Validation failed: {summary['invalid_count']} invalid entities found", err=True)
        raise typer.Exit(code=1)


@app.command()
def health(deep: bool = typer.Option(False, "--deep", help="Probe the external extraction service")):
    """
    Report health, optionally probing the extraction service.
    """
    settings = load_settings()
    body: Dict[str, Any] = {"ok": True}
    if deep:
        pipeline = build_pipeline(settings)
        body["ai"] = check_connectivity(pipeline.adapter.client, settings.health_models, settings.api_versions,
                                        timeout=settings.health_timeout)
    typer.echo(json.dumps(body, indent=2))
    if deep and not body["ai"]["ok"]:
        raise typer.Exit(code=1)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(5050, "--port", envvar="PORT"),
    reload: bool = typer.Option(False, "--reload"),
):
    """
    Run the HTTP API with uvicorn.
    """
    import uvicorn

    uvicorn.run("invoice_recon.api:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
