# replay_sandbox/remote/judge0.py
"""
Judge0 client used when the local interpreter cannot be started.

Wire contract:
  POST {base}/submissions?base64_encoded=false&wait=false   -> {"token": ...}
  GET  {base}/submissions/{token}?base64_encoded=false      -> status, stdout, stderr, time, memory

Statuses 1 (In Queue) and 2 (Processing) are non-terminal; anything above is
final. The remote side cannot suspend on input, so interactive programs that
run out of queued values simply hit EOF there.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, ConfigDict

from ..errors import RemoteExecutionError
from ..models import RunStatus

logger = logging.getLogger(__name__)

PYTHON_LANGUAGE_ID = 71  # Python 3.8.1 on Judge0 CE
CPU_TIME_LIMIT_S = 10
MEMORY_LIMIT_KB = 128_000
TIME_LIMIT_EXCEEDED = 5


class Judge0Status(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    description: str = ""


class Judge0Submission(BaseModel):
    source_code: str
    language_id: int = PYTHON_LANGUAGE_ID
    stdin: Optional[str] = None
    expected_output: Optional[str] = None
    cpu_time_limit: float = CPU_TIME_LIMIT_S
    memory_limit: int = MEMORY_LIMIT_KB


class Judge0Response(BaseModel):
    model_config = ConfigDict(extra="ignore")

    token: Optional[str] = None
    status: Judge0Status
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    compile_output: Optional[str] = None
    message: Optional[str] = None
    time: Optional[str] = None
    memory: Optional[int] = None

    @property
    def finished(self) -> bool:
        return self.status.id > 2


def interpret_status(status_id: int) -> tuple[str, str]:
    """Map a Judge0 status id to (category, human message)."""
    if status_id == 3:
        return "success", "Accepted"
    if status_id == 4:
        return "error", "Wrong Answer"
    if status_id == 5:
        return "timeout", "Time Limit Exceeded"
    if status_id == 6:
        return "compilation-error", "Compilation Error"
    runtime = {
        7: "SIGSEGV",
        8: "SIGXFSZ",
        9: "SIGFPE",
        10: "SIGABRT",
        11: "NZEC",
        12: "Other",
    }
    if status_id in runtime:
        return "runtime-error", f"Runtime Error ({runtime[status_id]})"
    if status_id == 13:
        return "error", "Internal Error"
    if status_id == 14:
        return "error", "Exec Format Error"
    return "error", "Unknown Status"


def run_status_for(status_id: int) -> RunStatus:
    """Collapse a Judge0 status id onto the local result statuses."""
    # Wrong Answer still means the program ran to completion
    if status_id in (3, 4):
        return RunStatus.SUCCESS
    if status_id == TIME_LIMIT_EXCEEDED:
        return RunStatus.TIMEOUT
    return RunStatus.RUNTIME_ERROR


class Judge0Client:
    """Synchronous submit/poll client. One instance can be shared across threads."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        poll_interval_s: float = 1.0,
        request_timeout_s: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not base_url:
            raise ValueError("Judge0 base URL is required")
        self.base_url = base_url.rstrip("/")
        self.poll_interval_s = poll_interval_s
        self.headers = {"Content-Type": "application/json"}
        if api_key:
            self.headers.update({
                "X-RapidAPI-Key": api_key,
                "X-RapidAPI-Host": urlparse(self.base_url).netloc,
            })
        self._http = httpx.Client(
            base_url=self.base_url,
            headers=self.headers,
            timeout=httpx.Timeout(request_timeout_s, connect=3.0),
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            r = self._http.request(method, path, **kwargs)
            r.raise_for_status()
            return r.json()
        except httpx.HTTPStatusError as e:
            raise RemoteExecutionError(
                f"Judge0 answered HTTP {e.response.status_code} on {method} {path}"
            ) from e
        except httpx.HTTPError as e:
            raise RemoteExecutionError(f"Failed to reach Judge0 at {self.base_url}: {e}") from e
        except ValueError as e:
            raise RemoteExecutionError(f"Judge0 returned a non-JSON body on {method} {path}") from e

    def submit(self, source: str, stdin: str = "", expected_output: Optional[str] = None) -> str:
        submission = Judge0Submission(source_code=source, stdin=stdin or None, expected_output=expected_output)
        payload = self._request(
            "POST",
            "/submissions",
            params={"base64_encoded": "false", "wait": "false"},
            json=submission.model_dump(exclude_none=True),
        )
        token = payload.get("token")
        if not token:
            raise RemoteExecutionError("Judge0 did not return a submission token")
        logger.info("Submitted to Judge0, token=%s", token)
        return token

    def poll(self, token: str) -> Judge0Response:
        payload = self._request("GET", f"/submissions/{token}", params={"base64_encoded": "false"})
        try:
            return Judge0Response.model_validate(payload)
        except ValueError as e:
            raise RemoteExecutionError(f"Unexpected Judge0 payload for {token}") from e

    def execute(
        self,
        source: str,
        stdin: str = "",
        expected_output: Optional[str] = None,
        max_wait_s: float = 10.0,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[Judge0Response]:
        """
        Submit and poll until a terminal status.

        Returns None when `cancel_event` is set while polling. When `max_wait_s`
        elapses first, a synthetic Time Limit Exceeded response is returned.
        """
        token = self.submit(source, stdin, expected_output)
        deadline = time.monotonic() + max_wait_s
        while time.monotonic() < deadline:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Judge0 poll for %s cancelled", token)
                return None
            result = self.poll(token)
            if result.finished:
                return result
            if cancel_event is not None:
                if cancel_event.wait(self.poll_interval_s):
                    logger.info("Judge0 poll for %s cancelled", token)
                    return None
            else:
                time.sleep(self.poll_interval_s)

        logger.warning("Judge0 submission %s still pending after %.1fs", token, max_wait_s)
        return Judge0Response(
            token=token,
            status=Judge0Status(id=TIME_LIMIT_EXCEEDED, description="Time Limit Exceeded"),
            stdout="",
        )
