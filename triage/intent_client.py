"""
Optional external intent classifier

The keyword path in escalation.py never depends on this client. Any
failure, a disabled configuration, or an answer below the confidence
threshold returns None and the caller keeps its keyword reading.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from config import settings

logger = logging.getLogger("intent-classifier")


@dataclass
class IntentResult:
    intent: str
    confidence: int
    reasoning: str = ""


class IntentClassifierClient:
    """HTTP client for the intent classification service"""

    def __init__(
        self,
        url: str = None,
        api_key: str = None,
        enabled: bool = None,
        threshold: int = None,
        timeout: float = None,
        session: Optional[requests.Session] = None,
    ):
        self.url = url if url is not None else settings.AI_INTENT_CLASSIFIER_URL
        self.api_key = api_key if api_key is not None else settings.AI_INTENT_CLASSIFIER_API_KEY
        self.enabled = settings.AI_INTENT_CLASSIFICATION_ENABLED if enabled is None else enabled
        self.threshold = settings.AI_CONFIDENCE_THRESHOLD if threshold is None else threshold
        self.timeout = timeout or settings.AI_INTENT_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    @property
    def is_available(self) -> bool:
        return bool(self.enabled and self.url)

    def classify(self, message: str, context: Optional[Dict[str, Any]] = None) -> Optional[IntentResult]:
        """
        Ask the service for an intent label

        Returns:
            IntentResult when the service answered confidently, otherwise None
        """
        if not self.is_available:
            return None

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = self.session.post(
                self.url,
                json={"message": message, "context": context or {}},
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
            result = IntentResult(
                intent=str(payload["intent"]),
                confidence=int(payload.get("confidence", 0)),
                reasoning=str(payload.get("reasoning", "")),
            )
        except requests.RequestException as e:
            logger.warning(f"Intent classifier request failed, using keyword analysis: {e}")
            return None
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Intent classifier returned an unusable response: {e}")
            return None

        if result.confidence < self.threshold:
            logger.info(
                f"Intent classifier confidence {result.confidence} below "
                f"{self.threshold} for intent {result.intent}, ignoring"
            )
            return None

        return result
