"""Tests for texlab settings."""

import dataclasses

import pytest

from gptme_texlab.config import (
    CONFIGURATION_SECTIONS,
    Formatter,
    TexlabSettings,
    format_server_error,
    language_id_for,
    load_settings,
    settings_from_mapping,
)
from gptme_texlab.errors import ConfigError


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setattr("pathlib.Path.home", lambda: home)
    return home


def test_payload_shape():
    settings = TexlabSettings(
        build_executable="latexmk",
        build_args=["-pdf", "-interaction=nonstopmode", "-synctex=1", "%f"],
        latexindent_local="~/.indentconfig.yaml",
    )
    payload = settings.to_payload()

    assert payload["rootDirectory"] == "."
    assert payload["build"] == {
        "executable": "latexmk",
        "args": ["-pdf", "-interaction=nonstopmode", "-synctex=1", "%f"],
        "auxDirectory": ".",
        "forwardSearchAfter": False,
        "onSave": False,
    }
    assert payload["forwardSearch"] == {"executable": None, "args": []}
    assert payload["chktex"] == {"onEdit": False, "onOpenAndSave": False}
    assert payload["diagnosticsDelay"] == 300
    assert payload["formatterLineLength"] == 80
    assert payload["bibtexFormatter"] == "texlab"
    assert payload["latexFormatter"] == "latexindent"
    assert payload["latexindent"] == {
        "local": "~/.indentconfig.yaml",
        "modifyLineBreaks": False,
    }


def test_configuration_uses_both_sections():
    settings = TexlabSettings()
    config = settings.configuration()

    assert tuple(config) == CONFIGURATION_SECTIONS
    assert all(section == settings.to_payload() for section in config.values())


def test_configuration_is_idempotent():
    settings = TexlabSettings(build_on_save=True, diagnostics_delay=50)

    first = settings.configuration()
    first["latex"]["build"]["args"].append("mutated")

    assert settings.configuration() != first
    assert settings.configuration() == settings.configuration()


def test_settings_are_immutable():
    settings = TexlabSettings()
    with pytest.raises(dataclasses.FrozenInstanceError):
        settings.build_on_save = True  # type: ignore[misc]


def test_lists_become_tuples():
    settings = TexlabSettings(build_args=["-pdf", "%f"])
    assert settings.build_args == ("-pdf", "%f")
    assert hash(settings) == hash(TexlabSettings(build_args=("-pdf", "%f")))


@pytest.mark.parametrize(
    "kwargs",
    [
        {"diagnostics_delay": -1},
        {"diagnostics_delay": "300"},
        {"formatter_line_length": True},
        {"latex_formatter": "prettier"},
        {"bibtex_formatter": "bibtool"},
        {"build_args": "-pdf %f"},
        {"forward_search_args": ["%p", 3]},
    ],
)
def test_invalid_values_rejected(kwargs):
    with pytest.raises(ConfigError):
        TexlabSettings(**kwargs)


def test_formatter_accepts_strings():
    settings = TexlabSettings(latex_formatter="texlab", bibtex_formatter="latexindent")
    assert settings.latex_formatter is Formatter.TEXLAB
    assert settings.bibtex_formatter is Formatter.LATEXINDENT


def test_section_lookup():
    settings = TexlabSettings()
    assert settings.section("texlab") == settings.to_payload()
    assert settings.section("latex.build") == settings.to_payload()
    assert settings.section(None) == settings.to_payload()
    assert settings.section("python") is None


@pytest.mark.parametrize(
    "name, expected",
    [
        ("main.tex", "latex"),
        ("Thesis.TEX", "latex"),
        ("refs.bib", "bibtex"),
        ("notes.md", None),
        ("main.tex.bak", None),
    ],
)
def test_language_id_for(name, expected):
    assert language_id_for(name) == expected


def test_load_settings_defaults(tmp_path):
    assert load_settings(tmp_path) == TexlabSettings()


def test_load_settings_project_overrides_user(tmp_path, isolated_home):
    user_config = isolated_home / ".config" / "gptme" / "config.toml"
    user_config.parent.mkdir(parents=True)
    user_config.write_text(
        '[plugin.texlab]\nbuild_executable = "tectonic"\nbuild_on_save = true\n'
    )
    (tmp_path / "gptme.toml").write_text(
        '[plugin.texlab]\nbuild_executable = "latexmk"\nbuild_args = ["-lualatex", "%f"]\n'
    )

    settings = load_settings(tmp_path)

    assert settings.build_executable == "latexmk"
    assert settings.build_args == ("-lualatex", "%f")
    assert settings.build_on_save is True


def test_load_settings_viewer_shorthand(tmp_path):
    (tmp_path / "gptme.toml").write_text('[plugin.texlab]\nforward_search_viewer = "zathura"\n')

    settings = load_settings(tmp_path)

    assert settings.forward_search_executable == "zathura"
    assert "%p" in settings.forward_search_args


def test_load_settings_ignores_broken_toml(tmp_path):
    (tmp_path / "gptme.toml").write_text("[plugin.texlab\n")
    assert load_settings(tmp_path) == TexlabSettings()


def test_unknown_keys_ignored(caplog):
    settings = settings_from_mapping({"build_on_save": True, "colour": "blue"})
    assert settings.build_on_save is True
    assert "colour" in caplog.text


def test_format_server_error_not_found():
    msg = format_server_error("not_found", "Searched for 'texlab'")
    assert "not found" in msg
    assert "Searched for 'texlab'" in msg
    assert "Install with" in msg


@pytest.mark.parametrize(
    "values",
    [
        {"build_args": 5},
        {"search_path": True},
        {"forward_search_args": {"a": "b"}},
        {"forward_search_viewer": 5},
        {"forward_search_viewer": ["zathura"]},
    ],
)
def test_malformed_toml_values_rejected(values):
    with pytest.raises(ConfigError):
        settings_from_mapping(values)


def test_empty_viewer_means_unset():
    assert settings_from_mapping({"forward_search_viewer": ""}) == TexlabSettings()


def test_plugin_key_not_a_table(tmp_path):
    (tmp_path / "gptme.toml").write_text('plugin = "texlab"\n')
    assert load_settings(tmp_path) == TexlabSettings()
