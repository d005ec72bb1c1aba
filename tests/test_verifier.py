from types import SimpleNamespace

import openai
import pytest

import config
from llm.verifier import SolutionVerifier, VerificationError, VerificationResult, parse_verdict


def test_parse_verdict():
    assert parse_verdict('{"is_correct": true}') == VerificationResult(is_correct=True)
    assert parse_verdict('{"is_correct": false}') == VerificationResult(is_correct=False)


@pytest.mark.parametrize("content", [None, "", "True", '{"is_correct": "yes"}', '{"verdict": true}', "[true]"])
def test_parse_verdict_rejects_malformed_replies(content):
    with pytest.raises(VerificationError):
        parse_verdict(content)


def test_missing_api_key(monkeypatch):
    monkeypatch.setattr(config, "OPENAI_API_KEY", "")
    with pytest.raises(ValueError):
        SolutionVerifier()


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _verifier(completions):
    verifier = SolutionVerifier(api_key="test-key", model="test-model")
    verifier.client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return verifier


async def test_verify_sends_question_and_image():
    completions = FakeCompletions(content='{"is_correct": true}')
    verifier = _verifier(completions)

    result = await verifier.verify("Solve 2x = 4", "data:image/png;base64,AAAA")

    assert result.is_correct
    request = completions.requests[0]
    assert request["model"] == "test-model"
    user_content = request["messages"][1]["content"]
    assert user_content[0] == {"type": "text", "text": "Solve 2x = 4"}
    assert user_content[1]["image_url"]["url"] == "data:image/png;base64,AAAA"


async def test_transport_errors_become_verification_errors():
    completions = FakeCompletions(error=openai.OpenAIError("connection reset"))

    with pytest.raises(VerificationError):
        await _verifier(completions).verify("Solve 2x = 4", "data:image/png;base64,AAAA")


async def test_unparseable_reply_is_a_verification_error():
    with pytest.raises(VerificationError):
        await _verifier(FakeCompletions(content="I think so")).verify("q", "data:image/png;base64,AAAA")
