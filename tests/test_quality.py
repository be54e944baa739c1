"""Tests for quality tier resolution."""

import dataclasses

import pytest

from portrait_backend.quality import resolve, available_modes


class TestResolve:

    @pytest.mark.parametrize(
        "mode, model, steps, resolution, guidance",
        [
            ("fast", "FLUX.1-schnell", 8, "640x896", 3.0),
            ("balanced", "FLUX.1-dev", 16, "768x1024", 3.5),
            ("high", "FLUX.1-dev", 24, "1024x1366", 4.0),
        ],
    )
    def test_documented_table(self, mode, model, steps, resolution, guidance):
        profile = resolve(mode)
        assert profile.name == mode
        assert profile.model_id == model
        assert profile.steps == steps
        assert profile.resolution == resolution
        assert profile.guidance_scale == guidance

    @pytest.mark.parametrize("mode", ["ultra", "", None, "FASTEST", "123"])
    def test_unknown_falls_back_to_balanced(self, mode):
        assert resolve(mode) == resolve("balanced")

    def test_case_and_whitespace_insensitive(self):
        assert resolve("  HIGH ") is resolve("high")

    def test_samplers(self):
        assert (resolve("fast").sampler, resolve("fast").scheduler) == ("dpmpp_2m", "karras")
        assert (resolve("balanced").sampler, resolve("balanced").scheduler) == ("euler", "simple")

    def test_profile_is_immutable(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            resolve("fast").steps = 50

    def test_available_modes(self):
        assert available_modes() == ("fast", "balanced", "high")
