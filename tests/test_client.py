"""ChatCompletionClient tests using httpx.MockTransport."""

from __future__ import annotations

import asyncio
import json
from typing import Callable

import httpx
import pytest

from opendoc.config import LLMSettings
from opendoc.translation import (
    ChatCompletionClient,
    TranslationBackendError,
    TranslationHTTPError,
    TranslationResponseError,
    TranslationTimeoutError,
)

Handler = Callable[[httpx.Request], httpx.Response]


def _settings(**overrides) -> LLMSettings:
    values = {"api_key": "sk-test", "base_url": "https://llm.example/v1/", "model": "m-1"}
    values.update(overrides)
    return LLMSettings(**values)


def _run(handler: Handler, call, settings: LLMSettings | None = None):
    async def main():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport) as http:
            client = ChatCompletionClient(settings or _settings(), http_client=http)
            return await call(client)

    return asyncio.run(main())


def _completion(content) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def test_translate_posts_chat_completion() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _completion("你好")

    result = _run(handler, lambda client: client.translate("to zh", "hello"))

    assert result == "你好"
    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == "https://llm.example/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    body = json.loads(request.content)
    assert body["model"] == "m-1"
    assert body["temperature"] == pytest.approx(0.7)
    assert body["max_tokens"] == 4000
    assert body["messages"] == [
        {"role": "system", "content": "to zh"},
        {"role": "user", "content": "hello"},
    ]


def test_missing_api_key_sends_no_authorization() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _completion("ok")

    _run(handler, lambda client: client.translate("p", "t"), _settings(api_key=""))

    assert "Authorization" not in seen[0].headers


def test_http_errors_carry_status_code() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="slow down")

    with pytest.raises(TranslationHTTPError) as excinfo:
        _run(handler, lambda client: client.translate("p", "t"))

    assert excinfo.value.status_code == 429
    assert "slow down" in str(excinfo.value)
    assert isinstance(excinfo.value, TranslationBackendError)


def test_timeouts_are_typed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(TranslationTimeoutError):
        _run(handler, lambda client: client.translate("p", "t"))


def test_transport_errors_are_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TranslationBackendError):
        _run(handler, lambda client: client.translate("p", "t"))


@pytest.mark.parametrize(
    "response",
    [
        _completion(""),
        _completion(None),
        httpx.Response(200, json={"choices": []}),
        httpx.Response(200, text="<html>"),
    ],
)
def test_unusable_completions_are_rejected(response: httpx.Response) -> None:
    with pytest.raises(TranslationResponseError):
        _run(lambda request: response, lambda client: client.translate("p", "t"))


def test_test_connection_reports_success_and_failure() -> None:
    assert _run(lambda request: _completion("hi"), lambda client: client.test_connection())
    assert not _run(
        lambda request: httpx.Response(401, text="bad key"),
        lambda client: client.test_connection(),
    )


def test_list_models() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert request.url.path == "/v1/models"
        return httpx.Response(200, json={"data": [{"id": "m-1"}, {"id": "m-2"}, {"x": 1}]})

    assert _run(handler, lambda client: client.list_models()) == ["m-1", "m-2"]


def test_injected_client_is_left_open() -> None:
    async def main() -> bool:
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: _completion("x")))
        async with ChatCompletionClient(_settings(), http_client=http):
            pass
        still_open = not http.is_closed
        await http.aclose()
        return still_open

    assert asyncio.run(main())
