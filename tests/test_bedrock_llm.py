"""Tests for the Bedrock chat-completion client."""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from fitmem.utils.bedrock_llm import BedrockLLM, BedrockLLMError
from fitmem.utils.config import BedrockLLMConfig
from fitmem.utils.constants import NO_RESPONSE_MESSAGE


def stream_of(*chunks, usage=None):
    events = [{'contentBlockDelta': {'delta': {'text': chunk}}} for chunk in chunks]
    if usage:
        events.append({'metadata': {'usage': usage, 'metrics': {'latencyMs': 120}}})
    return {'stream': events}


def throttled():
    return ClientError({'Error': {'Code': 'ThrottlingException', 'Message': 'Rate exceeded'}}, 'ConverseStream')


@pytest.fixture
def runtime():
    return MagicMock()


@pytest.fixture
def llm(runtime):
    config = BedrockLLMConfig(region='us-east-1', model_id='test-model', max_tokens=4096, temperature=0.0,
                              retry_attempts=3, retry_delay=0.01)
    return BedrockLLM(config, client=runtime)


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr('fitmem.utils.bedrock_llm.time.sleep', lambda _: None)


class TestComplete:

    def test_system_and_turns(self, llm, runtime):
        runtime.converse_stream.return_value = stream_of('Hello ', 'Sam!', usage={'inputTokens': 10})

        response = llm.complete([
            {'role': 'system', 'content': 'Persona'},
            {'role': 'system', 'content': 'Context'},
            {'role': 'user', 'content': "Hi, I'm Sam"},
        ], max_tokens=1000, temperature=0.7)

        assert response == 'Hello Sam!'
        kwargs = runtime.converse_stream.call_args.kwargs
        assert kwargs['modelId'] == 'test-model'
        assert kwargs['system'] == [{'text': 'Persona\n\nContext'}]
        assert kwargs['messages'] == [{'role': 'user', 'content': [{'text': "Hi, I'm Sam"}]}]
        assert kwargs['inferenceConfig'] == {'maxTokens': 1000, 'temperature': 0.7, 'stopSequences': []}

    def test_consecutive_roles_are_merged(self, llm, runtime):
        runtime.converse_stream.return_value = stream_of('ok')
        llm.complete([{'role': 'user', 'content': 'a'}, {'role': 'user', 'content': 'b'}])

        messages = runtime.converse_stream.call_args.kwargs['messages']
        assert messages == [{'role': 'user', 'content': [{'text': 'a'}, {'text': 'b'}]}]

    def test_empty_response_placeholder(self, llm, runtime):
        runtime.converse_stream.return_value = stream_of('  ')
        assert llm.complete([{'role': 'user', 'content': 'hi'}]) == NO_RESPONSE_MESSAGE

    def test_config_defaults(self, llm, runtime):
        runtime.converse_stream.return_value = stream_of('ok')
        llm.complete([{'role': 'user', 'content': 'hi'}])
        assert runtime.converse_stream.call_args.kwargs['inferenceConfig']['maxTokens'] == 4096
        assert runtime.converse_stream.call_args.kwargs['inferenceConfig']['temperature'] == 0.0

    def test_must_start_with_user(self, llm, runtime):
        with pytest.raises(BedrockLLMError):
            llm.complete([{'role': 'assistant', 'content': 'Hello'}, {'role': 'user', 'content': 'hi'}])
        runtime.converse_stream.assert_not_called()

    def test_unknown_role(self, llm):
        with pytest.raises(BedrockLLMError):
            llm.complete([{'role': 'tool', 'content': 'x'}])


class TestGenerateResponse:

    def test_metrics_are_collected(self, llm, runtime):
        runtime.converse_stream.return_value = stream_of('ok', usage={'inputTokens': 5, 'outputTokens': 1})

        msg, metrics = llm.generate_response([{'role': 'user', 'content': [{'text': 'hi'}]}], 'sys',
                                             stop_sequences=['```'])

        assert msg == 'ok'
        assert metrics == {'inputTokens': 5, 'outputTokens': 1, 'latencyMs': 120}
        assert runtime.converse_stream.call_args.kwargs['inferenceConfig']['stopSequences'] == ['```']

    def test_retries_then_succeeds(self, llm, runtime):
        runtime.converse_stream.side_effect = [throttled(), stream_of('ok')]

        msg, _ = llm.generate_response([{'role': 'user', 'content': [{'text': 'hi'}]}], '')

        assert msg == 'ok'
        assert runtime.converse_stream.call_count == 2
        assert runtime.converse_stream.call_args.kwargs['system'] == []

    def test_gives_up_after_retry_attempts(self, llm, runtime):
        runtime.converse_stream.side_effect = throttled()

        with pytest.raises(BedrockLLMError, match='after 3 attempts'):
            llm.generate_response([{'role': 'user', 'content': [{'text': 'hi'}]}], 'sys')
        assert runtime.converse_stream.call_count == 3

    def test_unexpected_error_is_not_retried(self, llm, runtime):
        runtime.converse_stream.side_effect = ValueError('bad stream')

        with pytest.raises(BedrockLLMError, match='Unexpected'):
            llm.generate_response([{'role': 'user', 'content': [{'text': 'hi'}]}], 'sys')
        assert runtime.converse_stream.call_count == 1


def test_health_check(llm, runtime):
    runtime.converse_stream.return_value = stream_of('OK')
    assert llm.health_check() is True
    runtime.converse_stream.side_effect = RuntimeError('down')
    assert llm.health_check() is False
