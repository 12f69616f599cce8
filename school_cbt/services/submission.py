"""
services/submission.py

결과 문서 최종 제출 파이프라인.

  - WebhookSink        : 스프레드시트 웹훅(Apps Script 등)으로 JSON POST
  - SubmissionPipeline : 재시도 → 실패 시 로컬 저장소 백업

finalize()는 절대 예외를 던지지 않고 항상 SubmissionOutcome을 돌려준다.
웹훅 채널은 세부 실패를 알려주지 못하는 경우가 많으므로, 예외 없이 끝난 시도는
성공으로 본다.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

import httpx
from pydantic import ValidationError

from config import RESULT_KEY_PREFIX, SUBMIT_MAX_RETRIES, SUBMIT_RETRY_DELAY, SUBMIT_TIMEOUT
from school_cbt.models.result_model import ResultDocument, SubmissionOutcome
from school_cbt.services.platform import utc_now_iso
from school_cbt.services.storage import KeyValueStore

logger = logging.getLogger(__name__)

LOCAL_ONLY_ERROR = "제출 웹훅이 설정되지 않았습니다. 결과는 로컬에만 저장됩니다."


class SubmissionSink(Protocol):
    async def send(self, payload: Dict[str, Any]) -> None:
        """결과 전송. 관찰 가능한 실패는 예외로 알린다."""
        ...


class WebhookSink:
    def __init__(
        self,
        url: str,
        timeout: float = SUBMIT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def send(self, payload: Dict[str, Any]) -> None:
        # Apps Script 웹앱은 302로 결과 페이지를 돌려주므로 리다이렉트를 따라간다
        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            response = await client.post(self.url, json=payload)
            response.raise_for_status()


def result_storage_key(submission_id: str) -> str:
    return f"{RESULT_KEY_PREFIX}{submission_id}"


class SubmissionPipeline:
    """
    Args:
        store:       전송 실패 시 결과를 보관할 저장소.
        sink:        전송 채널. None이면 로컬 저장만 한다.
        max_retries: 최대 시도 횟수 (최소 1).
        retry_delay: 시도 사이 대기 시간 (초).
    """

    def __init__(
        self,
        store: KeyValueStore,
        sink: Optional[SubmissionSink] = None,
        max_retries: int = SUBMIT_MAX_RETRIES,
        retry_delay: float = SUBMIT_RETRY_DELAY,
    ) -> None:
        self._store = store
        self.sink = sink
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay

    @property
    def is_configured(self) -> bool:
        return self.sink is not None

    def configure(self, webhook_url: Optional[str] = None, max_retries: Optional[int] = None) -> None:
        if webhook_url:
            self.sink = WebhookSink(webhook_url)
        if max_retries is not None:
            self.max_retries = max(1, max_retries)

    async def finalize(self, result: ResultDocument) -> SubmissionOutcome:
        submission_id = result.submission_id

        if self.sink is None:
            logger.warning(f"[{submission_id}] {LOCAL_ONLY_ERROR}")
            self._store_locally(result)
            return self._outcome(submission_id, success=False, error=LOCAL_ONLY_ERROR)

        payload = result.to_payload()
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                await self.sink.send(payload)
            except Exception as e:
                last_error = e
                logger.warning(f"[{submission_id}] 제출 시도 {attempt}/{self.max_retries} 실패: {e}")
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_delay)
                continue

            logger.info(f"[{submission_id}] 결과 제출 완료 (시도 {attempt}회)")
            return self._outcome(submission_id, success=True)

        self._store_locally(result)
        reason = str(last_error) if last_error else "알 수 없는 오류"
        return self._outcome(
            submission_id,
            success=False,
            error=f"{self.max_retries}회 시도 후 전송 실패: {reason}",
        )

    def load_stored_result(self, submission_id: str) -> Optional[ResultDocument]:
        raw = self._store.get(result_storage_key(submission_id))
        if raw is None:
            return None
        try:
            return ResultDocument.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"[{submission_id}] 저장된 결과 문서를 읽을 수 없습니다: {e}")
            return None

    def _store_locally(self, result: ResultDocument) -> None:
        try:
            self._store.set(
                result_storage_key(result.submission_id),
                result.model_dump_json(by_alias=True),
            )
        except Exception:
            logger.exception(f"[{result.submission_id}] 결과 로컬 저장 실패")
        else:
            logger.info(f"[{result.submission_id}] 결과를 로컬 저장소에 백업했습니다.")

    @staticmethod
    def _outcome(submission_id: str, success: bool, error: Optional[str] = None) -> SubmissionOutcome:
        return SubmissionOutcome(
            success=success,
            submission_id=submission_id,
            timestamp=utc_now_iso(),
            error=error,
        )
