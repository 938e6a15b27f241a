import base64
import json
import logging
import re
from typing import List, Optional, Dict, Any
from openai import OpenAI, OpenAIError
from config.settings import (
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
    CHAT_MODEL,
    VISION_MODEL,
    MAX_TOKENS,
    VISION_MAX_TOKENS,
    CHAT_TEMPERATURE,
    VISION_TEMPERATURE,
    REQUEST_TIMEOUT
)
from chartreview.analysis.historical_context import build_historical_context
from chartreview.database.base import ReviewRepository
from chartreview.errors import CollaboratorError
from chartreview.models.prediction import Prediction
from chartreview.models.review import Message, USER
from chartreview.utils.ai_base import VisionInterface, ChatInterface, VisionResult

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r'```(?:json)?\s*([\s\S]*?)\s*```')
_BARE_JSON = re.compile(r'\{[\s\S]*\}')

CHAT_SYSTEM_PROMPT = """You are a professional stock market assistant skilled in technical analysis and candlestick charts.

Your abilities:
1. Read candlestick charts and identify patterns and trends
2. Give key support, resistance, stop-loss and target levels
3. Recommend an action (long / short / hold)
4. Answer questions about the market
5. Learn from past reviews to make better predictions

When you give a prediction, always include these labeled lines:
Support: <number>
Resistance: <number>
Direction: <long|short|hold>
Stop Loss: <number>
Target: <number>

Be specific, explain your reasoning and state the risks clearly."""

VISION_SYSTEM_PROMPT = """You are an expert at extracting price data from candlestick charts. Your task:
1. Carefully read the prices shown in the chart
2. Extract the actual high, low and close of the last candle (or the shown period)
3. Reply with JSON only, numbers must be exact

Output format:
```json
{
  "actualHigh": number,
  "actualLow": number,
  "actualClose": number,
  "analysis": "short note on what you read: time range, overall move"
}
```

Notes:
- Prices are plain numbers without currency symbols
- If the chart is unreadable, explain why in "analysis"
- Check the price axis and labels carefully"""


def _default_client() -> OpenAI:
    return OpenAI(api_key=OPENAI_API_KEY, base_url=OPENAI_BASE_URL, timeout=REQUEST_TIMEOUT)


def image_data_url(image_bytes: bytes) -> str:
    return f"data:image/png;base64,{base64.b64encode(image_bytes).decode('ascii')}"


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_vision_reply(content: str) -> VisionResult:
    """Pull the price JSON out of a vision model reply"""
    if not content:
        raise CollaboratorError("Empty response from vision model")

    match = _FENCED_JSON.search(content) or _BARE_JSON.search(content)
    if not match:
        raise CollaboratorError("Vision model did not return JSON")

    json_text = match.group(1) if match.re is _FENCED_JSON else match.group(0)
    try:
        data = json.loads(json_text)
    except json.JSONDecodeError as e:
        raise CollaboratorError(f"Vision model returned invalid JSON: {str(e)}") from e

    if not isinstance(data, dict):
        raise CollaboratorError("Vision model JSON is not an object")

    fields = ('actualHigh', 'actualLow', 'actualClose')
    if not all(_is_number(data.get(f)) for f in fields):
        raise CollaboratorError(f"Vision model JSON is missing numeric fields: {data}")

    return VisionResult(
        actual_high=float(data['actualHigh']),
        actual_low=float(data['actualLow']),
        actual_close=float(data['actualClose']),
        rationale_text=str(data.get('analysis') or '')
    )


class OpenAIVisionClient(VisionInterface):
    """Reads actual prices from chart screenshots with a vision model"""

    def __init__(self, client: Optional[OpenAI] = None, model: str = VISION_MODEL):
        self.client = client or _default_client()
        self.model = model

    def extract_outcome(self, image_bytes: bytes, reference_prediction: Prediction) -> VisionResult:
        user_prompt = f"""Please read this candlestick chart and extract the actual prices.

Original prediction for reference:
- Predicted high (resistance): {reference_prediction.resistance_level or 'not predicted'}
- Predicted low (support): {reference_prediction.support_level or 'not predicted'}
- Predicted target: {reference_prediction.target or 'not predicted'}

Extract the actual high, low and close from the chart."""

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": VISION_SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": [
                            {"type": "image_url", "image_url": {"url": image_data_url(image_bytes)}},
                            {"type": "text", "text": user_prompt}
                        ]
                    }
                ],
                max_tokens=VISION_MAX_TOKENS,
                temperature=VISION_TEMPERATURE
            )
            content = response.choices[0].message.content
        except OpenAIError as e:
            logger.error(f"Error extracting prices from chart: {str(e)}")
            raise CollaboratorError(f"Vision request failed: {str(e)}") from e

        return parse_vision_reply(content)


class OpenAIChatClient(ChatInterface):
    """Conversational assistant with review history in its system prompt"""

    def __init__(self, repository: Optional[ReviewRepository] = None,
                 client: Optional[OpenAI] = None, model: str = CHAT_MODEL):
        self.repository = repository
        self.client = client or _default_client()
        self.model = model

    def build_system_prompt(self, context: Optional[str] = None) -> str:
        parts = [CHAT_SYSTEM_PROMPT]
        if self.repository is not None:
            history = build_historical_context(self.repository)
            if history:
                parts.append(history)
        if context:
            parts.append(context)
        return '\n\n'.join(parts)

    def build_messages(self, prior_messages: List[Message], new_user_text: str,
                       image: Optional[bytes] = None, context: Optional[str] = None) -> List[Dict[str, Any]]:
        messages = [{"role": "system", "content": self.build_system_prompt(context)}]

        for message in prior_messages:
            role = "user" if message.role == USER else "assistant"
            messages.append({"role": role, "content": message.content})

        if image:
            messages.append({
                "role": "user",
                "content": [
                    {"type": "image_url", "image_url": {"url": image_data_url(image)}},
                    {"type": "text", "text": new_user_text}
                ]
            })
        else:
            messages.append({"role": "user", "content": new_user_text})
        return messages

    def converse(self, prior_messages: List[Message], new_user_text: str,
                 image: Optional[bytes] = None, context: Optional[str] = None) -> str:
        messages = self.build_messages(prior_messages, new_user_text, image, context)
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=MAX_TOKENS,
                temperature=CHAT_TEMPERATURE
            )
            reply = response.choices[0].message.content
        except OpenAIError as e:
            logger.error(f"Error getting reply from assistant: {str(e)}")
            raise CollaboratorError(f"Chat request failed: {str(e)}") from e

        if not reply or not reply.strip():
            raise CollaboratorError("Empty response from assistant")
        return reply
