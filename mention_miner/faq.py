"""
AI answer client

問題轉送給外部 inference API。"No useful information." 是語意上的 sentinel，
代表「請換個問法」，不是傳輸錯誤。
"""

import os
from typing import Optional
import logging

import httpx

from mention_miner.config import FaqConfig
from mention_miner.errors import CollaboratorError
from mention_miner.models import FaqAnswer

logger = logging.getLogger(__name__)


NO_USEFUL_INFORMATION = "No useful information."
NO_ANSWER = "No answer available."
REPHRASE_MESSAGE = "I couldn't find useful information for that question. Try rephrasing it."


class FaqClient:
    """
    AI answer collaborator client

    Args:
        endpoint: API endpoint
        api_key: Authorization header
        project_id: project ID
        client: httpx.Client (測試時注入)
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str = "",
        project_id: str = "",
        client: Optional[httpx.Client] = None,
        timeout: float = 60.0
    ):
        if not endpoint:
            raise ValueError("FAQ endpoint is not configured")
        self.endpoint = endpoint
        self.api_key = api_key
        self.project_id = project_id
        self._client = client or httpx.Client(timeout=timeout)

    @classmethod
    def from_config(cls, config: FaqConfig, client: Optional[httpx.Client] = None) -> "FaqClient":
        """從環境變數建立 client"""
        return cls(
            endpoint=os.environ.get(config.endpoint_env, ""),
            api_key=os.environ.get(config.api_key_env, ""),
            project_id=os.environ.get(config.project_id_env, ""),
            client=client,
            timeout=config.timeout_seconds
        )

    def close(self) -> None:
        self._client.close()

    def ask(self, question: str) -> FaqAnswer:
        """
        提問

        Args:
            question: 問題

        Returns:
            FaqAnswer (is_useful=False 時 message 為換個問法的提示)

        Raises:
            ValueError: 問題為空
            CollaboratorError: 傳輸失敗
        """
        question = (question or "").strip()
        if not question:
            raise ValueError("question must not be empty")

        try:
            response = self._client.post(
                self.endpoint,
                json={"params": {"question": question}, "project": self.project_id},
                headers={"Content-Type": "application/json", "Authorization": self.api_key},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            logger.error(f"FAQ request failed: {e}")
            raise CollaboratorError("faq", str(e))
        except ValueError as e:
            raise CollaboratorError("faq", f"invalid JSON: {e}")

        output = payload.get("output") if isinstance(payload, dict) else None
        answer = output.get("answer") if isinstance(output, dict) else None
        answer = str(answer).strip() if answer else NO_ANSWER

        if answer == NO_USEFUL_INFORMATION:
            logger.info(f"No useful answer for question: {question!r}")
            return FaqAnswer(question=question, answer=answer, is_useful=False, message=REPHRASE_MESSAGE)

        return FaqAnswer(question=question, answer=answer)
