# flowprobe/schemas.py
"""
JSON Schema validation for `schema` checks.

Named schemas from `components.schemas` are registered under their name, so
a check can say ``$ref: User`` (or ``$ref: "User#/properties/id"``).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from jsonschema import Draft202012Validator, FormatChecker
from jsonschema.exceptions import SchemaError, ValidationError
from referencing import Registry, Resource
from referencing.exceptions import Unresolvable
from referencing.jsonschema import DRAFT202012

logger = logging.getLogger(__name__)


class SchemaValidator:
    """Validate payloads against JSON schemas"""

    def __init__(self, components: Optional[Mapping[str, Any]] = None):
        resources = [
            (name, Resource.from_contents(schema, default_specification=DRAFT202012))
            for name, schema in (components or {}).items()
        ]
        self.registry: Registry = Registry().with_resources(resources)
        self._format_checker = FormatChecker()

    def compile(self, schema: Dict[str, Any]) -> Draft202012Validator:
        """Build a validator once per step; raises SchemaError on a bad schema."""
        Draft202012Validator.check_schema(schema)
        return Draft202012Validator(schema, registry=self.registry, format_checker=self._format_checker)

    def validate(self, data: Any, schema: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
        """Validate data against a JSON schema"""
        try:
            self.compile(schema).validate(data)
            return True, None
        except ValidationError as e:
            return False, e.message
        except SchemaError as e:
            logger.warning(f"⚠️ Invalid JSON schema: {e.message}")
            return False, f"Invalid schema: {e.message}"
        except Unresolvable as e:
            logger.warning(f"⚠️ Unresolvable schema reference: {e}")
            return False, f"Unresolvable reference: {e}"
