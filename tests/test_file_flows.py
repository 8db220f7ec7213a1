from types import SimpleNamespace

import openai
import pytest

from conftest import ScriptedInvoker
from multisync.core.errors import FileUploadError, FlowConfigError, FlowOutputError
from multisync.core.orchestrator import run_flow_with_file, run_flow_with_file_bytes
from multisync.integration.file_store import OpenAIFileStore, guess_mime_type

API_KEY = "sk-test"


class FakeFileStore:
    def __init__(self):
        self.uploaded = []
        self.deleted = []

    async def create_from_path(self, path):
        self.uploaded.append(("path", str(path)))
        return "file-123"

    async def create_from_bytes(self, data, file_name, mime_type=None):
        self.uploaded.append(("bytes", file_name, mime_type, data))
        return "file-456"

    async def delete_quietly(self, file_id):
        self.deleted.append(file_id)


class FakeFiles:
    def __init__(self, fail_delete=False):
        self.created = []
        self.deleted = []
        self.fail_delete = fail_delete

    async def create(self, file, purpose):
        self.created.append((file, purpose))
        return SimpleNamespace(id="file-789")

    async def delete(self, file_id):
        if self.fail_delete:
            raise openai.OpenAIError("delete rejected")
        self.deleted.append(file_id)


def _client(**kwargs):
    return SimpleNamespace(files=FakeFiles(**kwargs))


async def test_file_is_attached_to_the_first_message(single_step_config, tmp_path):
    document = tmp_path / "report.pdf"
    document.write_bytes(b"%PDF-1.4")
    store = FakeFileStore()
    invoke = ScriptedInvoker({"writer": {"result": "summary"}})

    output = await run_flow_with_file(single_step_config, document, "summarize", API_KEY,
                                      file_store=store, invoker=invoke)

    assert output == {"result": "summary", "fileId": "file-123"}
    assert invoke.calls_for("writer")[0] == [{
        "role": "user",
        "content": [
            {"type": "input_file", "file_id": "file-123"},
            {"type": "input_text", "text": "summarize"},
        ],
    }]
    assert store.deleted == ["file-123"]


async def test_file_can_be_kept(single_step_config, tmp_path):
    store = FakeFileStore()
    await run_flow_with_file(single_step_config, tmp_path / "a.txt", "go", API_KEY,
                             delete_file_after=False, file_store=store,
                             invoker=ScriptedInvoker())
    assert store.deleted == []


async def test_file_is_deleted_when_the_flow_fails(single_step_config):
    store = FakeFileStore()
    invoke = ScriptedInvoker({"writer": {}})
    with pytest.raises(FlowOutputError, match='include "result"'):
        await run_flow_with_file_bytes(single_step_config, b"data", "notes.txt", "go", API_KEY,
                                       file_store=store, invoker=invoke)
    assert store.deleted == ["file-456"]


async def test_invalid_config_uploads_nothing(tmp_path):
    store = FakeFileStore()
    with pytest.raises(FlowConfigError):
        await run_flow_with_file({"flow": {"steps": []}}, tmp_path / "a.txt", "go", API_KEY,
                                 file_store=store, invoker=ScriptedInvoker())
    assert store.uploaded == []


async def test_bytes_flow_passes_mime_type(single_step_config):
    store = FakeFileStore()
    output = await run_flow_with_file_bytes(
        single_step_config, b"a,b\n1,2\n", "table.csv", "describe", API_KEY,
        mime_type="text/csv", file_store=store, invoker=ScriptedInvoker(),
    )
    assert output == {"result": "ok", "fileId": "file-456"}
    assert store.uploaded == [("bytes", "table.csv", "text/csv", b"a,b\n1,2\n")]


async def test_store_uploads_bytes_with_guessed_type():
    client = _client()
    store = OpenAIFileStore(API_KEY, client=client)
    assert await store.create_from_bytes(b"{}", "data.json") == "file-789"
    assert client.files.created == [(("data.json", b"{}", "application/json"), "user_data")]


async def test_store_wraps_missing_file(tmp_path):
    store = OpenAIFileStore(API_KEY, client=_client())
    with pytest.raises(FileUploadError, match="Failed to upload file"):
        await store.create_from_path(tmp_path / "absent.pdf")


async def test_delete_quietly_logs_failures(caplog):
    client = _client(fail_delete=True)
    store = OpenAIFileStore(API_KEY, client=client)
    await store.delete_quietly("file-1")
    assert "Failed to delete uploaded file file-1" in caplog.text


def test_guess_mime_type():
    assert guess_mime_type("a.pdf") == "application/pdf"
    assert guess_mime_type("blob") == "application/octet-stream"
