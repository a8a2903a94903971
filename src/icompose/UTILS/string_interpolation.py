"""
Utilities for string interpolation using environment variables.
"""
import re
from typing import Mapping, Optional

from .errors import InterpolationError

# $$ | $VAR | ${VAR} | ${VAR<op><arg>} where op is one of - :- + :+ ? :?
_PATTERN = re.compile(
    r"\$(?:"
    r"(?P<escaped>\$)"
    r"|(?P<named>[A-Za-z_][A-Za-z0-9_]*)"
    r"|\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?:(?P<op>:?[-+?])(?P<arg>[^}]*))?\}"
    r")"
)


class EnvironmentInterpolator:
    """
    Compose-style variable substitution.

    Supports ``$VAR``, ``${VAR}``, ``${VAR:-default}``, ``${VAR-default}``,
    ``${VAR:+alt}``, ``${VAR+alt}``, ``${VAR:?message}``, ``${VAR?message}``
    and ``$$`` for a literal dollar sign. The colon forms treat an empty
    value like an unset one. Unset plain references become empty strings.
    """
    @staticmethod
    def interpolate(template: str, context: Mapping[str, Optional[str]]) -> str:
        """
        Interpolates environment variables in the template string using the provided context.

        :param template: The string containing variable references.
        :param context: The environment variables context.
        :return: The interpolated string.
        :raises InterpolationError: If a required (``?``) variable is missing.
        """
        def replace(match):
            if match.group("escaped"):
                return "$"

            var_name = match.group("named") or match.group("braced")
            op = match.group("op")
            arg = match.group("arg") or ""
            value = context.get(var_name)

            if op is None:
                return value or ""

            strict = op.startswith(":")
            present = bool(value) if strict else value is not None

            if op.endswith("-"):
                return value if present else arg
            if op.endswith("+"):
                return arg if present else ""
            # ? and :?
            if not present:
                raise InterpolationError(arg or f"required variable {var_name} is missing a value")
            return value

        return _PATTERN.sub(replace, template)
