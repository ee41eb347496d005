import logging

import jsonschema

logger = logging.getLogger(__name__)

EMPTY_OBJECT_SCHEMA = {"type": "object", "properties": {}}


def normalize_schema(schema: dict | None) -> dict:
    """Return a usable parameters schema for a tool declaration.

    Anything that is not a valid JSON Schema object falls back to an
    argument-less object schema.
    """
    if not isinstance(schema, dict) or not schema:
        return dict(EMPTY_OBJECT_SCHEMA)
    try:
        jsonschema.validators.validator_for(schema).check_schema(schema)
    except jsonschema.SchemaError as e:
        logger.warning("Ignoring invalid tool schema: %s", e.message)
        return dict(EMPTY_OBJECT_SCHEMA)
    s = dict(schema)
    s.setdefault("type", "object")
    return s
