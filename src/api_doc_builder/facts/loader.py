"""Fact file loading for hosts that hand facts over as a file.

A fact file is YAML or JSON holding either a list of facts or a mapping with a
``facts`` list. Only the fact envelope (kind and scope) is validated here;
payloads are validated by the builder so they surface as diagnostics.
"""

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from api_doc_builder.facts.base import ApiFact

logger = logging.getLogger(__name__)


class FactFileError(Exception):
    """The fact file could not be read as a list of facts."""


def detect_format(text: str) -> str:
    """Detect the format of fact file text.

    Returns: 'json' or 'yaml'.
    """
    # flow-style YAML is read as JSON, the loader treats both alike
    return "json" if text.lstrip()[:1] in ("{", "[") else "yaml"


def load_facts(file_path: Path) -> list[ApiFact]:
    """Read a YAML or JSON fact file into a list of ApiFact."""
    text = file_path.read_text(encoding="utf-8")
    try:
        # JSON is a subset of YAML, one loader covers both formats
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise FactFileError(f"{file_path}: {e}") from e

    facts = parse_facts(data)
    logger.info("Loaded %d facts from %s (%s)", len(facts), file_path, detect_format(text))
    return facts


def parse_facts(data: object) -> list[ApiFact]:
    """Convert already-decoded fact data into ApiFact records, keeping order."""
    if isinstance(data, dict):
        data = data.get("facts")
    if data is None:
        return []
    if not isinstance(data, list):
        raise FactFileError("expected a list of facts or a mapping with a 'facts' list")

    facts = []
    for index, item in enumerate(data):
        try:
            facts.append(ApiFact.model_validate(item))
        except ValidationError as e:
            raise FactFileError(f"fact #{index}: {_first_error(e)}") from e
    return facts


def _first_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    return f"{location}: {first['msg']}" if location else first["msg"]
