"""
Unit tests for codegraph_indexer.store.client

The HTTP session is a MagicMock; no network access is needed.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests


def _response(status=200, body=None):
    resp = MagicMock()
    resp.status_code = status
    resp.content = b"{}" if body is not None else b""
    resp.json.return_value = body
    resp.text = str(body)
    return resp


def _client(*responses, max_retries=3):
    from codegraph_indexer.store import KnowledgeStoreClient
    session = MagicMock()
    session.request.side_effect = list(responses)
    sleeps = []
    client = KnowledgeStoreClient(
        "https://store.example/", "key-1",
        max_retries=max_retries, retry_delay=1.0,
        session=session, sleep=sleeps.append,
    )
    return client, session, sleeps


def _snapshot(with_nodes=True):
    from codegraph_indexer.graph.models import GraphSnapshot, Node, Relationship
    if not with_nodes:
        return GraphSnapshot()
    return GraphSnapshot(
        nodes=[Node("file_a_py", "File", {"path": "a.py", "language": "python"}),
               Node("func_a_py_f_1", "Function", {"name": "f"})],
        relationships=[Relationship("func_a_py_f_1", "file_a_py", "DEFINED_IN")],
    )


_META = {"filePath": "a.py", "language": "python", "topics": ["code"], "tags": ["💻"]}


class TestAdd:
    def test_payload_shape_and_memory_id(self):
        client, session, _ = _client(_response(200, {"data": [{"memoryId": "mem-1"}]}))
        assert client.add("# doc", _META, _snapshot()) == "mem-1"

        method, url = session.request.call_args[0]
        kwargs = session.request.call_args[1]
        assert (method, url) == ("POST", "https://store.example/v1/memory")
        assert kwargs["headers"]["X-API-Key"] == "key-1"
        payload = kwargs["json"]
        assert payload["content"] == "# doc"
        assert payload["type"] == "text"
        meta = payload["metadata"]
        assert meta["sourceType"] == "code_indexer"
        assert meta["emoji tags"] == ["💻"]
        assert meta["customMetadata"]["file_path"] == "a.py"
        assert meta["customMetadata"]["node_count"] == 2
        graph = payload["graph_generation"]
        assert graph["mode"] == "manual"
        assert graph["manual"]["nodes"][0]["id"] == "file_a_py"
        assert graph["manual"]["relationships"][0]["relationship_type"] == "DEFINED_IN"

    def test_empty_graph_omits_graph_generation(self):
        client, session, _ = _client(_response(200, {"data": {"memoryId": "mem-2"}}))
        assert client.add("File: a.py", _META, _snapshot(with_nodes=False)) == "mem-2"
        assert "graph_generation" not in session.request.call_args[1]["json"]

    def test_missing_memory_id_raises(self):
        from codegraph_indexer.errors import PublishError
        client, _, _ = _client(_response(200, {"data": [], "error": "quota"}))
        with pytest.raises(PublishError, match="quota"):
            client.add("x", _META, _snapshot())


class TestRetries:
    def test_retries_server_errors_then_succeeds(self):
        client, session, sleeps = _client(
            _response(500, {"error": "boom"}),
            _response(503, {"error": "busy"}),
            _response(200, {"data": []}),
        )
        assert client.list_schemas() == []
        assert session.request.call_count == 3
        assert len(sleeps) == 2
        assert 1.0 <= sleeps[0] <= 1.1
        assert 2.0 <= sleeps[1] <= 2.2

    def test_rate_limit_doubles_backoff(self):
        client, _, sleeps = _client(
            _response(429, {"error": "slow down"}),
            _response(200, {"data": []}),
        )
        client.list_schemas()
        assert 2.0 <= sleeps[0] <= 2.2

    def test_transport_errors_are_retried(self):
        client, session, _ = _client(
            requests.exceptions.ConnectionError("refused"),
            _response(200, {"data": [{"id": "s1", "name": "CodeGraph_v1"}]}),
        )
        assert client.list_schemas() == [{"id": "s1", "name": "CodeGraph_v1"}]
        assert session.request.call_count == 2

    def test_client_error_is_not_retried(self):
        from codegraph_indexer.errors import PublishError
        client, session, sleeps = _client(_response(400, {"error": "bad graph"}))
        with pytest.raises(PublishError) as exc_info:
            client.add("x", _META, _snapshot())
        assert exc_info.value.status_code == 400
        assert session.request.call_count == 1
        assert sleeps == []

    def test_exhausted_retries_raise(self):
        from codegraph_indexer.errors import PublishError
        client, session, sleeps = _client(
            _response(500, {}), _response(500, {}), max_retries=2,
        )
        with pytest.raises(PublishError, match="after 2 attempts") as exc_info:
            client.list_schemas()
        assert exc_info.value.status_code == 500
        assert len(sleeps) == 1


class TestDeleteAndSchemas:
    def test_delete_memory(self):
        client, session, _ = _client(_response(200, {}))
        assert client.delete_memory("mem-1") is True
        assert session.request.call_args[0] == ("DELETE", "https://store.example/v1/memory/mem-1")

    def test_delete_missing_memory(self):
        client, _, _ = _client(_response(404, {"error": "not found"}))
        assert client.delete_memory("mem-x") is False

    def test_create_schema_returns_id(self):
        client, session, _ = _client(_response(201, {"data": {"id": "s-9"}}))
        assert client.create_schema({"name": "CodeGraph_v1"}) == "s-9"
        assert session.request.call_args[1]["json"] == {"name": "CodeGraph_v1"}

    def test_create_schema_without_id_raises(self):
        from codegraph_indexer.errors import PublishError
        client, _, _ = _client(_response(200, {"data": {}}))
        with pytest.raises(PublishError):
            client.create_schema({"name": "CodeGraph_v1"})

    def test_from_config_requires_credentials(self):
        from codegraph_indexer.config import Config
        from codegraph_indexer.errors import ConfigurationError
        from codegraph_indexer.store import KnowledgeStoreClient
        cfg = Config()
        cfg.API_KEY = ""
        with pytest.raises(ConfigurationError):
            KnowledgeStoreClient.from_config(cfg)
