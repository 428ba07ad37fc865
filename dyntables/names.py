import re
from typing import Optional

NAME_PATTERN = r"^[a-z][a-z0-9_]{0,29}$"
NAME_RE = re.compile(NAME_PATTERN)

# Engine-managed columns plus property names that clients deserializing rows
# into plain objects treat specially.
RESERVED_NAMES = frozenset({
    "id",
    "created_at",
    "updated_at",
    "__proto__",
    "constructor",
    "prototype",
})

REGISTRY_TABLE = "table_registry"


def identifier_error(name: object) -> Optional[str]:
    """
    Return why `name` is not a usable table/column identifier, or None if it is.

    Valid identifiers:
    - Start with a lowercase ASCII letter
    - Continue with up to 29 lowercase letters, digits or underscores
    - Are not one of RESERVED_NAMES
    """
    if not isinstance(name, str) or not NAME_RE.fullmatch(name):
        return f"must match {NAME_PATTERN}"
    if name in RESERVED_NAMES:
        return "is reserved"
    return None


def validate_identifier(name: object) -> bool:
    return identifier_error(name) is None


def table_name_error(name: object) -> Optional[str]:
    """Same rules as identifier_error; the registry's own table is also off limits."""
    err = identifier_error(name)
    if err is None and name == REGISTRY_TABLE:
        return "is reserved"
    return err
