"""Tests for collection file loading and directory discovery."""

import json

import pytest
import yaml

from reqchain.core import CollectionError, load_collection, load_collections
from reqchain.request import Verb


def _write_collection(path, requests=None, **fields):
    data = {"requests": requests or [{"uri": "http://localhost/health", "verb": "GET"}]}
    data.update(fields)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix == ".json":
        path.write_text(json.dumps(data))
    else:
        path.write_text(yaml.dump(data))


# ── load_collection ──────────────────────────────────────────────────────


class TestLoadCollection:
    def test_yaml(self, tmp_path):
        path = tmp_path / "users.yaml"
        _write_collection(
            path,
            name="Users",
            properties={"base": "http://localhost"},
            requests=[
                {"uri": "{base}/login", "verb": "POST", "extract": {"t": "json:token"}},
                {"uri": "{base}/me", "verb": "GET"},
            ],
        )
        collection = load_collection(path)
        assert collection.name == "Users"
        assert collection.properties == {"base": "http://localhost"}
        assert [r.verb for r in collection.requests] == [Verb.POST, Verb.GET]
        assert collection.requests[0].extract == {"t": "json:token"}
        assert collection.working_dir == tmp_path.resolve()
        assert collection.errors == []

    def test_json(self, tmp_path):
        path = tmp_path / "basic.json"
        _write_collection(path, name="basic")
        collection = load_collection(path)
        assert collection.name == "basic"
        assert collection.requests[0].uri == "http://localhost/health"

    def test_name_defaults_to_stem(self, tmp_path):
        path = tmp_path / "orders.yml"
        _write_collection(path)
        assert load_collection(path).name == "orders"

    def test_request_order_preserved(self, tmp_path):
        path = tmp_path / "c.yaml"
        reqs = [{"uri": f"http://x/{i}", "verb": "GET"} for i in range(5)]
        _write_collection(path, requests=reqs)
        assert [r.uri for r in load_collection(path).requests] == [r["uri"] for r in reqs]

    def test_body_file_resolved_relative_to_collection(self, tmp_path):
        sub = tmp_path / "api"
        (sub / "_data").mkdir(parents=True)
        (sub / "_data" / "body.json").write_text('{"user": "{name}"}')
        path = sub / "c.yaml"
        _write_collection(
            path,
            requests=[{"uri": "http://x", "verb": "POST", "body": "file:_data/body.json"}],
        )
        collection = load_collection(path)
        assert collection.requests[0].body == '{"user": "{name}"}'

    def test_missing_body_file_is_reported_not_fatal(self, tmp_path):
        path = tmp_path / "c.yaml"
        _write_collection(
            path,
            requests=[
                {"uri": "http://x/a", "verb": "POST", "body": "file:missing.json"},
                {"uri": "http://x/b", "verb": "GET"},
            ],
        )
        collection = load_collection(path)
        assert len(collection.requests) == 2
        assert collection.requests[0].body == "file:missing.json"
        assert len(collection.errors) == 1
        assert "http://x/a" in collection.errors[0]
        assert "missing.json" in collection.errors[0]

    def test_invalid_request_names_index(self, tmp_path):
        path = tmp_path / "c.yaml"
        _write_collection(path, requests=[{"uri": "http://x", "verb": "GET"}, {"uri": "http://y"}])
        with pytest.raises(CollectionError, match=r"request \[1\]"):
            load_collection(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(CollectionError, match="mapping"):
            load_collection(path)

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("requests: [unclosed\n")
        with pytest.raises(CollectionError, match="Failed to read"):
            load_collection(path)

    def test_missing_requests_rejected(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("name: empty\n")
        with pytest.raises(CollectionError, match="missing required field 'requests'"):
            load_collection(path)

    def test_empty_requests_list(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("name: empty\nrequests: []\n")
        assert load_collection(path).requests == []

    def test_tab_indented_json(self, tmp_path):
        path = tmp_path / "tabs.json"
        data = {"name": "tabs", "requests": [{"uri": "http://x", "verb": "GET"}]}
        path.write_text(json.dumps(data, indent="\t"))
        collection = load_collection(path)
        assert collection.name == "tabs"
        assert collection.requests[0].uri == "http://x"

    def test_json_non_bmp_escape(self, tmp_path):
        path = tmp_path / "emoji.json"
        path.write_text(
            '{"requests": [{"uri": "http://x", "verb": "POST", "body": "\\ud83d\\ude00"}]}',
        )
        req = load_collection(path).requests[0]
        assert req.body == "\U0001F600"
        assert req.resolved_body({}) == "\U0001F600".encode()

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "c.json"
        path.write_text('{"requests": [')
        with pytest.raises(CollectionError, match="Failed to read"):
            load_collection(path)

    def test_lone_surrogate_rejected(self, tmp_path):
        path = tmp_path / "c.json"
        path.write_text('{"requests": [{"uri": "http://x", "verb": "POST", "body": "\\ud83d"}]}')
        with pytest.raises(CollectionError, match="not valid UTF-8"):
            load_collection(path)


# ── load_collections ─────────────────────────────────────────────────────


class TestLoadCollections:
    def test_recursive_sorted(self, tmp_path):
        _write_collection(tmp_path / "b.yaml", name="b")
        _write_collection(tmp_path / "a.json", name="a")
        _write_collection(tmp_path / "nested" / "c.yml", name="c")
        collections, errors = load_collections(tmp_path)
        assert [c.name for c in collections] == ["a", "b", "c"]
        assert errors == []

    def test_underscore_dirs_skipped(self, tmp_path):
        _write_collection(tmp_path / "main.yaml", name="main")
        _write_collection(tmp_path / "_data" / "fixture.json", name="fixture")
        collections, _ = load_collections(tmp_path)
        assert [c.name for c in collections] == ["main"]

    def test_hidden_and_other_files_skipped(self, tmp_path):
        _write_collection(tmp_path / "main.yaml", name="main")
        _write_collection(tmp_path / ".hidden" / "x.yaml", name="hidden")
        (tmp_path / "notes.txt").write_text("not a collection")
        collections, _ = load_collections(tmp_path)
        assert [c.name for c in collections] == ["main"]

    def test_config_files_skipped(self, tmp_path):
        _write_collection(tmp_path / "main.yaml", name="main")
        (tmp_path / "reqchain.yaml").write_text(yaml.dump({"defaults": {"timeout": 5}}))
        (tmp_path / ".reqchain.yaml").write_text(yaml.dump({"defaults": {"timeout": 5}}))
        collections, errors = load_collections(tmp_path)
        assert [c.name for c in collections] == ["main"]
        assert errors == []

    def test_bad_file_reported_others_loaded(self, tmp_path):
        _write_collection(tmp_path / "good.yaml", name="good")
        (tmp_path / "bad.yaml").write_text("requests:\n  - verb: GET\n")
        collections, errors = load_collections(tmp_path)
        assert [c.name for c in collections] == ["good"]
        assert len(errors) == 1
        assert "bad.yaml" in errors[0]

    def test_single_file_root(self, tmp_path):
        path = tmp_path / "only.yaml"
        _write_collection(path, name="only")
        _write_collection(tmp_path / "other.yaml", name="other")
        collections, _ = load_collections(path)
        assert [c.name for c in collections] == ["only"]

    def test_unrelated_project_files_skipped(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({"name": "app", "version": "1.0.0"}))
        (tmp_path / "docker-compose.yml").write_text(yaml.dump({"services": {"web": {}}}))
        _write_collection(tmp_path / "api.yaml", name="api")
        collections, errors = load_collections(tmp_path)
        assert [c.name for c in collections] == ["api"]
        assert len(errors) == 2

    def test_empty_dir(self, tmp_path):
        assert load_collections(tmp_path) == ([], [])
