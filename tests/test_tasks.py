import asyncio
from dataclasses import replace
from unittest.mock import AsyncMock, Mock, patch

import pytest
from app.config import get_settings
from app.services.tasks.factory import get_task_enqueuer
from app.services.tasks.inline import InlineEnqueuer
from app.services.tasks.local import LocalHttpEnqueuer


@pytest.mark.anyio
async def test_local_task_dispatch():
  """Verify that the local enqueuer posts to the run-job endpoint with the shared secret."""

  settings = replace(get_settings(), base_url="http://tasks.internal:8000", task_secret="test-task-secret", task_service_provider="local-http")

  with patch("app.services.tasks.local.httpx.AsyncClient") as mock_client_cls:
    mock_client = AsyncMock()
    mock_client_cls.return_value.__aenter__.return_value = mock_client
    mock_response = Mock()
    mock_response.raise_for_status = Mock()
    mock_client.post.return_value = mock_response

    enqueuer = get_task_enqueuer(settings)
    assert isinstance(enqueuer, LocalHttpEnqueuer)

    await enqueuer.enqueue("test-job-123")

    mock_client.post.assert_called_once()
    args, kwargs = mock_client.post.call_args
    assert args[0] == "http://tasks.internal:8000/internal/tasks/run-job"
    assert kwargs["json"] == {"job_id": "test-job-123"}
    assert kwargs["headers"] == {"x-lectern-task-secret": "test-task-secret"}


@pytest.mark.anyio
async def test_local_task_dispatch_requires_base_url():
  settings = replace(get_settings(), base_url=None)
  with pytest.raises(RuntimeError, match="Base URL"):
    await LocalHttpEnqueuer(settings).enqueue("job-abc")


@pytest.mark.anyio
async def test_inline_dispatch_runs_the_job_on_the_loop():
  settings = replace(get_settings(), task_service_provider="inline")

  with patch("app.services.jobs.run_job", new_callable=AsyncMock) as mock_run:
    enqueuer = get_task_enqueuer(settings)
    assert isinstance(enqueuer, InlineEnqueuer)
    await enqueuer.enqueue("job-abc")
    await asyncio.sleep(0)

  mock_run.assert_awaited_once_with("job-abc", settings)
