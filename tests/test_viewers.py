"""Tests for forward-search viewer presets."""

import pytest

from gptme_texlab.config import TexlabSettings
from gptme_texlab.errors import ConfigError
from gptme_texlab.viewers import PRESETS, apply_preset


def test_presets_use_placeholders():
    for name, (executable, args) in PRESETS.items():
        assert executable, name
        joined = " ".join(args)
        assert "%p" in joined, name
        assert "%l" in joined, name


def test_apply_preset_returns_new_settings():
    settings = TexlabSettings()
    updated = apply_preset(settings, "Zathura")

    assert settings.forward_search_executable is None
    assert updated.forward_search_executable == "zathura"
    assert updated.to_payload()["forwardSearch"]["args"] == [
        "--synctex-forward",
        "%l:1:%f",
        "%p",
    ]


def test_unknown_viewer():
    with pytest.raises(ConfigError, match="Unknown viewer"):
        apply_preset(TexlabSettings(), "acrobat")


@pytest.mark.parametrize("viewer", [5, ["zathura"], True])
def test_viewer_must_be_string(viewer):
    with pytest.raises(ConfigError, match="must be a string"):
        apply_preset(TexlabSettings(), viewer)
