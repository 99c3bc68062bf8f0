"""
Question source client for the Open Trivia Database.
Fetches question batches over HTTP and parses them into Question objects.
"""
import logging
from typing import Optional

import httpx

from .models import Question, QuestionBatch, QuestionRequest

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://opentdb.com/"
DEFAULT_TIMEOUT = 10.0  # seconds

RESPONSE_CODE_SUCCESS = 0
RESPONSE_CODE_NO_RESULTS = 1
RESPONSE_CODE_INVALID_PARAMETER = 2
RESPONSE_CODE_TOKEN_NOT_FOUND = 3
RESPONSE_CODE_TOKEN_EMPTY = 4
RESPONSE_CODE_RATE_LIMIT = 5

RESPONSE_CODE_MESSAGES = {
    RESPONSE_CODE_NO_RESULTS: "Not enough questions available for this category and difficulty",
    RESPONSE_CODE_INVALID_PARAMETER: "The trivia API rejected the request parameters",
    RESPONSE_CODE_TOKEN_NOT_FOUND: "The trivia API session token was not found",
    RESPONSE_CODE_TOKEN_EMPTY: "The trivia API has no more questions for this session",
    RESPONSE_CODE_RATE_LIMIT: "Too many requests to the trivia API, please wait a few seconds",
}


class QuestionSourceError(Exception):
    """Raised when a question batch cannot be retrieved or parsed."""
    pass


def describe_response_code(response_code: int) -> str:
    """User-facing message for a non-success API response code."""
    return RESPONSE_CODE_MESSAGES.get(
        response_code,
        f"Invalid response from the trivia API (code {response_code})"
    )


def parse_batch(payload) -> QuestionBatch:
    """
    Parse a decoded API payload into a QuestionBatch.

    Expected structure:
    {
        "response_code": int,
        "results": [
            {
                "category": str,
                "type": "multiple" | "boolean",
                "difficulty": str,
                "question": str,
                "correct_answer": str,
                "incorrect_answers": [str, ...]
            }
        ]
    }

    Raises:
        QuestionSourceError: If the payload does not have this shape
    """
    if not isinstance(payload, dict):
        raise QuestionSourceError("Response must be a JSON object")

    response_code = payload.get("response_code")
    if not isinstance(response_code, int) or isinstance(response_code, bool):
        raise QuestionSourceError("Response is missing an integer 'response_code'")

    results = payload.get("results", [])
    if not isinstance(results, list):
        raise QuestionSourceError("'results' must be an array")

    questions = []
    for i, item in enumerate(results):
        if not isinstance(item, dict):
            raise QuestionSourceError(f"Result {i} must be an object")
        try:
            questions.append(Question.from_api_dict(item))
        except KeyError as e:
            raise QuestionSourceError(f"Result {i} missing field {e}") from e
        except TypeError as e:
            raise QuestionSourceError(f"Result {i} is malformed: {e}") from e

    return QuestionBatch(response_code=response_code, results=tuple(questions))


class OpenTriviaClient:
    """Fetches question batches from the Open Trivia Database API."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize the client.

        Args:
            base_url: API root, ``api.php`` is appended to it
            timeout: Request timeout in seconds
            transport: Optional httpx transport, used to stub the network
        """
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return self.base_url.rstrip("/") + "/api.php"

    async def fetch(self, request: QuestionRequest) -> QuestionBatch:
        """
        Fetch one batch of questions.

        Args:
            request: Amount and optional category/difficulty/type filters

        Returns:
            Parsed batch; a non-zero ``response_code`` is returned as-is

        Raises:
            QuestionSourceError: On transport failure or malformed payload
        """
        params = request.to_params()
        logger.info(f"Fetching questions from {self.endpoint} with {params}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(self.endpoint, params=params)
                if response.status_code == 429:
                    logger.warning("Trivia API rate limit hit")
                    return QuestionBatch(response_code=RESPONSE_CODE_RATE_LIMIT)
                response.raise_for_status()
                payload = response.json()

        except httpx.TimeoutException as e:
            logger.error(f"Trivia API request timed out after {self.timeout}s")
            raise QuestionSourceError(f"Request timed out: {e}") from e

        except httpx.HTTPStatusError as e:
            logger.error(f"Trivia API error: {e.response.status_code}")
            raise QuestionSourceError(f"HTTP error {e.response.status_code}") from e

        except httpx.HTTPError as e:
            logger.error(f"Trivia API transport error: {e}")
            raise QuestionSourceError(f"Network error: {e}") from e

        except ValueError as e:
            logger.error(f"Trivia API returned invalid JSON: {e}")
            raise QuestionSourceError("Invalid JSON in response") from e

        batch = parse_batch(payload)
        logger.info(
            f"Received {len(batch.results)} questions (response_code={batch.response_code})"
        )
        return batch
