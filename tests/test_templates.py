import pytest

from safe_code_runner import SecurityFilter
from safe_code_runner.templates import get_templates, template_languages


def test_every_language_has_hello_and_input_templates() -> None:
    for language in template_languages():
        templates = get_templates(language)
        assert "hello" in templates
        assert "input" in templates


def test_lookup_is_case_insensitive() -> None:
    assert get_templates(" Python ")["hello"] == 'print("Hello, World!")\n'


def test_unknown_language_raises() -> None:
    with pytest.raises(KeyError, match="Templates not found for language: cobol"):
        get_templates("cobol")


def test_templates_are_read_only() -> None:
    templates = get_templates("python")

    with pytest.raises(TypeError):
        templates["hello"] = "print(1)"  # type: ignore[index]


def test_templates_pass_the_security_filter() -> None:
    gate = SecurityFilter()
    for language in template_languages():
        for name, source in get_templates(language).items():
            assert gate.check(source, language).allowed, f"{language}/{name}"
