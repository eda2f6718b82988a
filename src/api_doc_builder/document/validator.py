"""Validates serialized OpenAPI documents for reference and identity errors."""

from typing import Any, Iterator


def collect_refs(data: Any, location: str = "#") -> Iterator[tuple[str, str]]:
    """Yield (location, $ref value) for every reference in a JSON-like tree."""
    if isinstance(data, dict):
        ref = data.get("$ref")
        if isinstance(ref, str):
            yield location, ref
        for key, value in data.items():
            yield from collect_refs(value, f"{location}/{_escape(str(key))}")
    elif isinstance(data, list):
        for i, item in enumerate(data):
            yield from collect_refs(item, f"{location}/{i}")


def resolve_pointer(data: Any, pointer: str) -> Any:
    """Resolve a local JSON pointer such as ``#/components/schemas/Product``.

    Raises KeyError when the pointer does not resolve.
    """
    if not pointer.startswith("#"):
        raise KeyError(pointer)
    node = data
    for part in pointer[1:].split("/")[1:]:
        part = part.replace("~1", "/").replace("~0", "~")
        if isinstance(node, dict) and part in node:
            node = node[part]
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            raise KeyError(pointer)
    return node


def validate_references(data: dict) -> dict[str, str]:
    """Check every $ref resolves inside the document.

    Returns dict of {location: error_message} for dangling references.
    """
    errors = {}
    for location, ref in collect_refs(data):
        try:
            resolve_pointer(data, ref)
        except KeyError:
            errors[location] = f"DanglingReference: {ref} does not resolve"
    return errors


def validate_operation_ids(data: dict) -> dict[str, str]:
    """Check operation ids are unique, ignoring case.

    Returns dict of {location: error_message} for repeated ids.
    """
    errors = {}
    seen: dict[str, str] = {}
    for path, methods in (data.get("paths") or {}).items():
        if not isinstance(methods, dict):
            continue
        for method, operation in methods.items():
            if not isinstance(operation, dict) or "operationId" not in operation:
                continue
            location = f"#/paths/{_escape(path)}/{method}"
            key = str(operation["operationId"]).casefold()
            if key in seen:
                errors[location] = f"DuplicateOperationId: '{operation['operationId']}' also used at {seen[key]}"
            else:
                seen[key] = location
    return errors


def validate_document(data: Any) -> dict[str, str]:
    """Run all validations on a decoded document.

    Returns dict of {location: error_message} for all problems found.
    Structure is checked first; references and ids only when it passes.
    """
    if not isinstance(data, dict):
        return {"#": "InvalidDocument: document root is not an object"}

    errors = {}
    for key in ("openapi", "info", "paths"):
        if key not in data:
            errors[f"#/{key}"] = f"MissingField: '{key}' is required"

    if not errors:
        errors.update(validate_references(data))
        errors.update(validate_operation_ids(data))
    return errors


def _escape(token: str) -> str:
    return token.replace("~", "~0").replace("/", "~1")
