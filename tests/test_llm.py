import pytest
from unittest.mock import patch, MagicMock, AsyncMock

from langchain_core.exceptions import OutputParserException
from langchain_core.messages import HumanMessage, SystemMessage

from journal_engine.services import llm as llm_service
from journal_engine.services.llm import (
    RateLimitExceeded,
    generate_text,
    get_llm,
    parse_structured_output,
)


@pytest.fixture
def mock_chat_google_generative_ai():
    """Mock for ChatGoogleGenerativeAI."""
    get_llm.__wrapped__.cache_clear()
    with patch("journal_engine.services.llm.ChatGoogleGenerativeAI") as mock:
        mock_instance = MagicMock()
        mock.return_value = mock_instance
        yield mock
    get_llm.__wrapped__.cache_clear()


@pytest.fixture
def allow_requests():
    with patch.object(llm_service.gemini_limiter, "acquire", AsyncMock(return_value=True)) as acquire:
        yield acquire


def test_get_llm(mock_chat_google_generative_ai):
    """Test getting LLM client."""
    # Call the function
    llm = get_llm()

    # Verify the ChatGoogleGenerativeAI was created with correct parameters
    mock_chat_google_generative_ai.assert_called_once()
    call_kwargs = mock_chat_google_generative_ai.call_args.kwargs

    assert call_kwargs["model"] == "gemini-1.5-flash"
    assert "google_api_key" in call_kwargs
    assert call_kwargs["temperature"] == 0.2

    # Verify we got back the mock instance
    assert llm == mock_chat_google_generative_ai.return_value

    # Cached: a second call does not create another client
    get_llm()
    mock_chat_google_generative_ai.assert_called_once()


@pytest.mark.asyncio
async def test_generate_text(mock_chat_google_generative_ai, allow_requests):
    """System and user prompts are sent as messages; the reply is stripped."""
    model = mock_chat_google_generative_ai.return_value
    bound = MagicMock()
    bound.ainvoke = AsyncMock(return_value=MagicMock(content="  Hello there \n"))
    model.bind.return_value = bound

    text = await generate_text("Hi", system_prompt="Be brief", temperature=0.7)

    assert text == "Hello there"
    model.bind.assert_called_once_with(temperature=0.7)
    messages = bound.ainvoke.call_args.args[0]
    assert messages == [SystemMessage(content="Be brief"), HumanMessage(content="Hi")]


@pytest.mark.asyncio
async def test_generate_text_joins_content_parts(mock_chat_google_generative_ai, allow_requests):
    model = mock_chat_google_generative_ai.return_value
    model.ainvoke = AsyncMock(return_value=MagicMock(content=[{"type": "text", "text": "a"}, "b"]))

    assert await generate_text("Hi") == "ab"
    model.bind.assert_not_called()


@pytest.mark.asyncio
async def test_generate_text_rate_limited(mock_chat_google_generative_ai):
    with patch.object(llm_service.gemini_limiter, "acquire", AsyncMock(return_value=False)):
        with pytest.raises(RateLimitExceeded):
            await generate_text("Hi")

    mock_chat_google_generative_ai.return_value.ainvoke.assert_not_called()


def test_parse_structured_output():
    assert parse_structured_output('```json\n{"action": "respond"}\n```') == {"action": "respond"}

    with pytest.raises(OutputParserException):
        parse_structured_output("no json here")
