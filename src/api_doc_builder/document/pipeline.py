"""Build pipeline: facts in, assembled document and diagnostics out.

One ``DocumentBuilder`` owns a fresh FactIndex, TypeCatalog, SchemaRegistry
and OperationBuilder per build, so independent builds never share state.
"""

import logging
from pathlib import Path

from api_doc_builder.diagnostics import (
    BuildFailedError,
    DanglingReferenceError,
    DiagnosticBag,
    DuplicateFactError,
)
from api_doc_builder.document.assembler import DocumentAssembler
from api_doc_builder.document.emitter import emit, write_atomic
from api_doc_builder.document.nodes import DocumentNode
from api_doc_builder.document.operation import OperationBuilder
from api_doc_builder.document.validator import collect_refs, validate_references
from api_doc_builder.facts.base import ApiFact, ExampleConfigPayload, FactKind, OutputPayload
from api_doc_builder.facts.index import FactIndex
from api_doc_builder.schema.catalog import TypeCatalog
from api_doc_builder.schema.examples import ExampleComposer
from api_doc_builder.schema.nodes import COMPONENT_PREFIX
from api_doc_builder.schema.registry import SchemaRegistry

logger = logging.getLogger(__name__)


class BuildResult:
    """The assembled document of one build together with its diagnostics."""

    def __init__(self, document: DocumentNode, diagnostics: DiagnosticBag, outputs: list[OutputPayload]):
        self.document = document
        self.diagnostics = diagnostics
        self.outputs = outputs

    @property
    def ok(self) -> bool:
        return not self.diagnostics.has_errors

    def render(self, output: OutputPayload | None = None) -> bytes:
        """Serialize the document, or the tag subset an output asks for.

        Raises BuildFailedError when the build has any error diagnostic.
        """
        if not self.ok:
            raise BuildFailedError(self.diagnostics.errors)
        document = self.document
        if output is not None and output.tags:
            document = subset_document(document, output.tags)
        return emit(document)


class DocumentBuilder:
    """Runs every build stage over one fact list."""

    def __init__(self, facts: list[ApiFact]):
        self.facts = facts

    def build(self) -> BuildResult:
        diagnostics = DiagnosticBag()
        index = FactIndex(self.facts, diagnostics)
        index.check_orphans()

        catalog = TypeCatalog.from_index(index)
        registry = SchemaRegistry(catalog)
        examples = ExampleComposer.from_config(catalog, self._example_config(index, diagnostics))
        builder = OperationBuilder(registry, diagnostics, examples)

        routes = [(route, index.related(route.fact.scope.target)) for route in index.operations()]
        operations = builder.build_all(routes)

        for target in catalog.unmatched_properties():
            diagnostics.warn("OrphanFact", "property fact does not match any declared member", f"property:{target}")

        document = DocumentAssembler(diagnostics).assemble(operations, index, registry.components)
        outputs = self._outputs(index, diagnostics)

        if not diagnostics.has_errors:
            # every $ref must land on a component; a miss here is a builder bug
            for location, message in validate_references(document.to_dict()).items():
                diagnostics.report(DanglingReferenceError(message, location))

        logger.info(
            "Built %d operations, %d components: %d error(s), %d warning(s)",
            len(operations), len(registry), len(diagnostics.errors), len(diagnostics.warnings),
        )
        return BuildResult(document, diagnostics, outputs)

    @staticmethod
    def _example_config(index: FactIndex, diagnostics: DiagnosticBag) -> ExampleConfigPayload | None:
        configs = index.assembly(FactKind.EXAMPLE_CONFIG)
        for duplicate in configs[1:]:
            diagnostics.report(DuplicateFactError("example configuration declared more than once", duplicate.scope))
        return configs[0].payload if configs else None

    @staticmethod
    def _outputs(index: FactIndex, diagnostics: DiagnosticBag) -> list[OutputPayload]:
        outputs: list[OutputPayload] = []
        file_names: set[str] = set()
        for r in index.assembly(FactKind.OUTPUT):
            if r.payload.file_name in file_names:
                diagnostics.report(DuplicateFactError(f"output file '{r.payload.file_name}' requested twice", r.scope))
                continue
            file_names.add(r.payload.file_name)
            outputs.append(r.payload)
        return outputs or [OutputPayload()]


def build(facts: list[ApiFact]) -> BuildResult:
    """Build the document for a fact list."""
    return DocumentBuilder(facts).build()


def write_outputs(result: BuildResult, output_dir: Path) -> list[Path]:
    """Render every requested output and write them under output_dir.

    Nothing is written unless all outputs render. Returns the written paths.
    """
    rendered = [(output_dir / output.file_name, result.render(output)) for output in result.outputs]
    return [write_atomic(data, path) for path, data in rendered]


def subset_document(document: DocumentNode, tags: list[str]) -> DocumentNode:
    """Keep only operations carrying one of ``tags`` and the components they reach."""
    wanted = set(tags)
    paths = {}
    for path, methods in document.paths.items():
        kept = {method: op for method, op in methods.items() if wanted & set(op.tags or ())}
        if kept:
            paths[path] = kept
    used_tags = {tag for methods in paths.values() for op in methods.values() for tag in op.tags or ()}
    subset = document.model_copy(update={"paths": paths})

    components = subset.components
    if components is not None and components.schemas:
        data = subset.to_dict()
        data.pop("components", None)
        pending = [ref for _, ref in collect_refs(data)]
        reachable: set[str] = set()
        while pending:
            name = pending.pop().removeprefix(COMPONENT_PREFIX)
            if name in reachable or name not in components.schemas:
                continue
            reachable.add(name)
            schema = components.schemas[name].model_dump(mode="json", by_alias=True, exclude_none=True)
            pending.extend(ref for _, ref in collect_refs(schema))
        schemas = {name: s for name, s in components.schemas.items() if name in reachable}
        components = components.model_copy(update={"schemas": schemas or None})
        if components.schemas is None and components.security_schemes is None:
            components = None

    groups = []
    for group in subset.tag_groups or []:
        group_tags = [t for t in group.tags if t in used_tags]
        if group_tags:
            groups.append(group.model_copy(update={"tags": group_tags}))

    return subset.model_copy(update={
        "components": components,
        "tags": [t for t in subset.tags or [] if t.name in used_tags] or None,
        "tag_groups": groups or None,
    })
