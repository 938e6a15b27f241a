import pytest
from openai import OpenAIError
from chartreview.errors import CollaboratorError
from chartreview.models.review import Message, Review, USER, ASSISTANT
from chartreview.utils.openai_client import (
    OpenAIChatClient,
    OpenAIVisionClient,
    parse_vision_reply,
    image_data_url
)


def completion(mocker, content):
    response = mocker.Mock()
    response.choices = [mocker.Mock()]
    response.choices[0].message.content = content
    return response


@pytest.fixture
def mock_openai(mocker):
    """Mock OpenAI SDK client"""
    return mocker.Mock()


class TestParseVisionReply:
    def test_fenced_json(self):
        content = """Here is what I see:
```json
{"actualHigh": 119.5, "actualLow": 99, "actualClose": 125.25, "analysis": "Daily chart, Oct 1"}
```"""
        result = parse_vision_reply(content)

        assert result.actual_high == 119.5
        assert result.actual_low == 99.0
        assert result.actual_close == 125.25
        assert result.rationale_text == "Daily chart, Oct 1"

    def test_bare_json(self):
        result = parse_vision_reply('Result: {"actualHigh": 10, "actualLow": 8, "actualClose": 9}')

        assert result.actual_close == 9.0
        assert result.rationale_text == ""

    @pytest.mark.parametrize("content", [
        "",
        "I cannot read this chart.",
        "```json\n{not json}\n```",
        '{"actualHigh": "119", "actualLow": 99, "actualClose": 125}',
        '{"actualHigh": 119, "actualLow": 99}',
        '{"actualHigh": true, "actualLow": 99, "actualClose": 125}',
    ])
    def test_unusable_replies(self, content):
        with pytest.raises(CollaboratorError):
            parse_vision_reply(content)


def test_image_data_url():
    assert image_data_url(b"abc") == "data:image/png;base64,YWJj"


class TestVisionClient:
    def test_extract_outcome(self, mocker, mock_openai, sample_prediction):
        mock_openai.chat.completions.create.return_value = completion(
            mocker, '```json\n{"actualHigh": 119, "actualLow": 99, "actualClose": 125, "analysis": "ok"}\n```'
        )
        client = OpenAIVisionClient(client=mock_openai, model="vision-test")

        result = client.extract_outcome(b"png", sample_prediction)

        assert result.actual_high == 119.0
        kwargs = mock_openai.chat.completions.create.call_args.kwargs
        assert kwargs['model'] == "vision-test"
        user_content = kwargs['messages'][1]['content']
        assert user_content[0]['image_url']['url'].startswith("data:image/png;base64,")
        assert "Predicted high (resistance): 120.0" in user_content[1]['text']

    def test_transport_error(self, mock_openai, sample_prediction):
        mock_openai.chat.completions.create.side_effect = OpenAIError("connection reset")
        client = OpenAIVisionClient(client=mock_openai)

        with pytest.raises(CollaboratorError):
            client.extract_outcome(b"png", sample_prediction)


class TestChatClient:
    def test_converse_builds_history(self, mocker, mock_openai):
        mock_openai.chat.completions.create.return_value = completion(mocker, "Noted, thanks!")
        client = OpenAIChatClient(client=mock_openai, model="chat-test")
        history = [
            Message(role=ASSISTANT, content="Welcome to the review!"),
            Message(role=USER, content="Hi")
        ]

        reply = client.converse(history, "High was 119", context="Predictions under review: #1")

        assert reply == "Noted, thanks!"
        messages = mock_openai.chat.completions.create.call_args.kwargs['messages']
        assert messages[0]['role'] == "system"
        assert "Predictions under review: #1" in messages[0]['content']
        assert [m['role'] for m in messages[1:]] == ["assistant", "user", "user"]
        assert messages[-1]['content'] == "High was 119"

    def test_image_is_sent_inline(self, mock_openai):
        client = OpenAIChatClient(client=mock_openai)

        messages = client.build_messages([], "What about this?", image=b"abc")

        assert messages[-1]['content'][0]['image_url']['url'] == "data:image/png;base64,YWJj"
        assert messages[-1]['content'][1]['text'] == "What about this?"

    def test_system_prompt_includes_review_history(self, mock_openai, storage):
        storage.save_review(Review(
            analysis_id="analysis-1",
            actual_high=265.0,
            actual_low=245.0,
            actual_close=262.0,
            accuracy=85
        ))
        client = OpenAIChatClient(repository=storage, client=mock_openai)

        prompt = client.build_system_prompt()

        assert "Review history" in prompt
        assert "Accuracy: 85%" in prompt

    def test_failure_and_empty_reply(self, mocker, mock_openai):
        client = OpenAIChatClient(client=mock_openai)

        mock_openai.chat.completions.create.side_effect = OpenAIError("rate limited")
        with pytest.raises(CollaboratorError):
            client.converse([], "hi")

        mock_openai.chat.completions.create.side_effect = None
        mock_openai.chat.completions.create.return_value = completion(mocker, "   ")
        with pytest.raises(CollaboratorError):
            client.converse([], "hi")
