"""Tests for follow-up message template rendering."""

from app.services.message_template import (
    DEFAULT_CLINIC_NAME,
    build_message_variables,
    extract_variables,
    render_template,
)


def test_render_substitutes_known_variables():
    result = render_template(
        "Olá {nome}, sua consulta é {data} às {hora}.",
        {"nome": "Maria", "data": "01/06/2024", "hora": "12:00"},
    )
    assert result == "Olá Maria, sua consulta é 01/06/2024 às 12:00."


def test_render_missing_variable_becomes_empty():
    assert render_template("Oi {nome}{sobrenome}!", {"nome": "Ana"}) == "Oi Ana!"


def test_render_none_value_becomes_empty():
    assert render_template("Com {profissional}.", {"profissional": None}) == "Com ."


def test_render_repeated_placeholder():
    assert render_template("{nome} {nome}", {"nome": "Bia"}) == "Bia Bia"


def test_render_leaves_non_placeholder_braces():
    # Only {word} is a placeholder
    assert render_template("{ nome } {}", {"nome": "x"}) == "{ nome } {}"


def test_extract_variables_in_order_without_duplicates():
    assert extract_variables("{nome} em {clinica} com {nome} às {hora}") == [
        "nome",
        "clinica",
        "hora",
    ]


def test_build_message_variables_defaults():
    variables = build_message_variables("Maria", None)
    assert variables == {"nome": "Maria", "clinica": DEFAULT_CLINIC_NAME}


def test_build_message_variables_extra_overrides_and_none_keeps_standard():
    variables = build_message_variables(
        "Maria",
        "Clínica Sorriso",
        {"nome": None, "data": "01/06/2024", "profissional": None},
    )
    assert variables["nome"] == "Maria"
    assert variables["clinica"] == "Clínica Sorriso"
    assert variables["data"] == "01/06/2024"
    assert variables["profissional"] is None
