"""Message template rendering for follow-up automation.

Templates use single-brace placeholders: ``"Olá {nome}, até {data}!"``.
"""

import re
from typing import Mapping

# Variable pattern for template substitution: {variable_name}
VARIABLE_PATTERN = re.compile(r"\{(\w+)\}")

# Variables every follow-up message can rely on
STANDARD_VARIABLES = ("nome", "clinica", "data", "hora", "profissional")

DEFAULT_CLINIC_NAME = "Clínica"


def render_template(template: str, variables: Mapping[str, str | None]) -> str:
    """
    Render a template with variable substitution.

    Every ``{name}`` placeholder is replaced. Missing or None variables are
    replaced with empty string, so rendering never fails and never leaves a
    placeholder in the output.
    """
    def replace_var(match: re.Match) -> str:
        value = variables.get(match.group(1))
        return "" if value is None else str(value)

    return VARIABLE_PATTERN.sub(replace_var, template)


def extract_variables(template: str) -> list[str]:
    """Return placeholder names in order of first appearance."""
    seen: list[str] = []
    for name in VARIABLE_PATTERN.findall(template):
        if name not in seen:
            seen.append(name)
    return seen


def build_message_variables(
    target_name: str | None,
    clinic_name: str | None,
    extra: Mapping[str, str | None] | None = None,
) -> dict[str, str | None]:
    """Merge caller-supplied variables over the standard ones.

    Caller values win, except that a None value never hides a standard one.
    """
    variables: dict[str, str | None] = {
        "nome": target_name or "",
        "clinica": clinic_name or DEFAULT_CLINIC_NAME,
    }
    for key, value in (extra or {}).items():
        if value is None and key in variables:
            continue
        variables[key] = value
    return variables
