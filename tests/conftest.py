import pytest
from datetime import datetime, timezone
from chartreview.analysis.outcome_resolver import OutcomeResolver
from chartreview.analysis.review_engine import ReviewEngine
from chartreview.database.json_storage import JsonStorageClient
from chartreview.models.prediction import Prediction, Outcome, Direction
from chartreview.models.review import Message, Conversation, Analysis, USER, ASSISTANT
from chartreview.utils.ai_base import ChatInterface, VisionInterface, VisionResult

PREDICTION_TEXT = """Looking at the daily chart, price is holding above the 20-day average.

Support: 100
Resistance: 120
Direction: long
Stop Loss: 90
Target: 130

Volume confirms the move."""


@pytest.fixture
def sample_prediction():
    return Prediction(
        support_level=100.0,
        resistance_level=120.0,
        direction=Direction.LONG,
        stop_loss=90.0,
        target=130.0,
        rationale_text=PREDICTION_TEXT,
        source_message_id="msg-1"
    )


@pytest.fixture
def sample_outcome():
    return Outcome(actual_high=119.0, actual_low=99.0, actual_close=125.0)


@pytest.fixture
def sample_conversation():
    return Conversation(
        id="conv-1",
        title="AAPL daily",
        messages=[
            Message(id="msg-0", role=USER, content="What do you think about this chart?", image_ref="chart-1.png"),
            Message(id="msg-1", role=ASSISTANT, content=PREDICTION_TEXT),
            Message(id="msg-2", role=USER, content="And a short-term view?"),
            Message(
                id="msg-3",
                role=ASSISTANT,
                content="Support: 105\nResistance: 118\nDirection: hold\nStop Loss: 95\nTarget: 0"
            ),
            Message(id="msg-4", role=ASSISTANT, content="Thanks, good luck with the trade!")
        ]
    )


@pytest.fixture
def sample_analysis():
    return Analysis(
        id="analysis-1",
        stock_code="TSLA",
        date="2026-10-01",
        image_ref="chart-tsla.png",
        user_input="Where is TSLA heading?",
        support_level=240.0,
        resistance_level=260.0,
        direction="long",
        stop_loss=235.0,
        target=270.0,
        reasoning="Breakout above the descending trendline.",
        created_at=datetime(2026, 10, 1, tzinfo=timezone.utc)
    )


@pytest.fixture
def storage(tmp_path, sample_conversation, sample_analysis):
    client = JsonStorageClient(data_dir=str(tmp_path))
    client.save_conversation(sample_conversation)
    client.save_analysis(sample_analysis)
    return client


@pytest.fixture
def mock_chat(mocker):
    """Mock chat assistant"""
    chat = mocker.Mock(spec=ChatInterface)
    chat.converse.return_value = "Please share the actual high, low and close."
    return chat


@pytest.fixture
def mock_vision(mocker):
    """Mock vision client returning a readable chart"""
    vision = mocker.Mock(spec=VisionInterface)
    vision.extract_outcome.return_value = VisionResult(
        actual_high=119.0,
        actual_low=99.0,
        actual_close=125.0,
        rationale_text="Daily candle, strong close"
    )
    return vision


@pytest.fixture
def engine(storage, mock_vision, mock_chat):
    return ReviewEngine(
        repository=storage,
        resolver=OutcomeResolver(mock_vision),
        chat=mock_chat
    )
