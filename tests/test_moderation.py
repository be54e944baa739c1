import pytest

from portrait_backend.errors import ContentPolicyError
from portrait_backend.model import GenerationOptions
from portrait_backend.moderation import KeywordContentPolicy, NoopContentPolicy, build_policy


class TestKeywordContentPolicy:

    @pytest.mark.parametrize("field", ["pose", "background", "clothing", "lighting", "style", "bodyType"])
    def test_every_field_is_checked(self, field):
        values = {"style": "editorial"}
        values[field] = "fully NAKED"
        options = GenerationOptions(**values)
        with pytest.raises(ContentPolicyError) as exc_info:
            KeywordContentPolicy().check(options)
        assert '"naked"' in exc_info.value.message
        assert exc_info.value.status_code == 400

    @pytest.mark.parametrize("text", ["classic glass office", "passion for sussex", "bass guitar"])
    def test_whole_words_only(self, text):
        KeywordContentPolicy().check(GenerationOptions(style=text))

    def test_custom_terms(self):
        policy = KeywordContentPolicy(terms=["Halloween"])
        with pytest.raises(ContentPolicyError):
            policy.check(GenerationOptions(style="halloween costume"))
        policy.check(GenerationOptions(style="nude"))


def test_build_policy():
    assert isinstance(build_policy(True), KeywordContentPolicy)
    disabled = build_policy(False)
    assert isinstance(disabled, NoopContentPolicy)
    disabled.check(GenerationOptions(style="nude"))
