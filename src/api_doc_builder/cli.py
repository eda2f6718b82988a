"""CLI entry point for api-doc-builder."""

import logging
from pathlib import Path

import click
import yaml

from api_doc_builder.diagnostics import BuildFailedError
from api_doc_builder.document.pipeline import build, write_outputs
from api_doc_builder.document.validator import validate_document
from api_doc_builder.facts.loader import FactFileError, load_facts


@click.group()
def main():
    """API Doc Builder — compile API facts into an OpenAPI document."""
    pass


@main.command(name="build")
@click.argument("facts_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "-o", "--output-dir",
    default=Path("."),
    envvar="API_DOC_OUTPUT_DIR",
    show_default=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory the documents are written to.",
)
@click.option("-v", "--verbose", is_flag=True, help="Log every build stage.")
def build_cmd(facts_path: Path, output_dir: Path, verbose: bool):
    """Build OpenAPI documents from a YAML or JSON fact file."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    click.echo(f"Reading facts from {facts_path}...")
    try:
        facts = load_facts(facts_path)
    except FactFileError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Loaded {len(facts)} facts.")

    result = build(facts)
    for diagnostic in result.diagnostics:
        click.echo(f"  {diagnostic}", err=True)

    try:
        written = write_outputs(result, output_dir)
    except BuildFailedError as e:
        click.echo(f"Build failed with {len(e.diagnostics)} error(s); no output written.", err=True)
        raise SystemExit(1) from e

    for path in written:
        click.echo(f"  Created {path}")
    click.echo(f"Generated {len(written)} document(s) in {output_dir}")


@main.command()
@click.argument("doc_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def check(doc_path: Path):
    """Check an OpenAPI document for dangling references and duplicate operation ids."""
    try:
        # JSON is a subset of YAML
        data = yaml.safe_load(doc_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise click.ClickException(f"{doc_path}: {e}") from e

    errors = validate_document(data)
    for location, message in errors.items():
        click.echo(f"  {location}: {message}", err=True)
    if errors:
        click.echo(f"{doc_path}: {len(errors)} problem(s) found.", err=True)
        raise SystemExit(1)
    click.echo(f"{doc_path}: OK")
