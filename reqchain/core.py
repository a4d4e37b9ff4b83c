"""reqchain core - config loading, property store, template resolution, collections."""

import json
import os
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import dotenv_values

GLOBAL_DIR = Path.home() / ".reqchain"
GLOBAL_CONFIG = GLOBAL_DIR / "config.yaml"

CWD_CONFIG_CANDIDATES = [
    ".reqchain.yaml",
    ".reqchain.yml",
    "reqchain.yaml",
    "reqchain.yml",
]

COLLECTION_SUFFIXES = (".json", ".yaml", ".yml")

# One or two braces either side of a (possibly empty) word.
_PLACEHOLDER_RE = re.compile(r"\{{1,2}(\w*)\}{1,2}")


class CollectionError(ValueError):
    """A collection or request definition could not be understood."""


# ── Config ───────────────────────────────────────────────────────────────


def resolve_path(
    candidates: list[Path],
    default: Path | None = None,
) -> Path | None:
    """Return the first existing path from candidates, else default."""
    for p in candidates:
        if p.exists():
            return p.resolve()
    return default


def resolve_config_path(config_file: str | None) -> Path | None:
    """Find the config file to use.

    Resolution order:
      1. Explicit -c flag (hard, no fallthrough if missing)
      2. .reqchain.yaml (variants) in CWD
      3. ~/.reqchain/config.yaml
    """
    if config_file:
        return resolve_path([Path(config_file)])
    return resolve_path([Path(c) for c in CWD_CONFIG_CANDIDATES] + [GLOBAL_CONFIG])


def load_config(config_path: str | Path | None) -> dict:
    """Load YAML config file. Returns empty sections if not found.

    Stores '_config_dir' in the returned dict so the env file can be
    resolved relative to the config file.
    """
    if config_path is None:
        return {"defaults": {}, "properties": {}, "_config_dir": None}
    path = Path(config_path)
    if not path.exists():
        return {"defaults": {}, "properties": {}, "_config_dir": None}
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return {
        "defaults": data.get("defaults") or {},
        "properties": data.get("properties") or {},
        "_config_dir": path.resolve().parent,
    }


def load_env(env_file: str | None, base_dir: str | Path | None = None) -> dict[str, str]:
    """Load .env file and merge with os.environ.

    .env values take precedence over os.environ for the vars they define.
    """
    env = dict(os.environ)
    if env_file:
        dotenv_path = Path(base_dir or ".") / env_file
        if dotenv_path.exists():
            dotenv_vars = dotenv_values(str(dotenv_path))
            env.update({k: v for k, v in dotenv_vars.items() if v is not None})
    return env


def resolve_value(value: Any, env: dict[str, str]) -> Any:
    """Resolve $VAR and ${VAR} references in a string value.

    Unknown variables are left as written. Non-strings pass through.
    """
    if not isinstance(value, str):
        return value

    def _replace(m: re.Match) -> str:
        var_name = m.group(1) or m.group(2)
        return env.get(var_name, m.group(0))

    return re.sub(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)", _replace, value)


def parse_assignments(specs: tuple[str, ...] | list[str]) -> dict[str, str]:
    """Parse repeated key=value CLI flags. Specs without '=' are ignored."""
    result = {}
    for spec in specs:
        if "=" in spec:
            k, v = spec.split("=", 1)
            result[k.strip()] = v.strip()
    return result


def build_global_properties(
    config: dict,
    env: dict[str, str],
    overrides: dict[str, str] | None = None,
) -> dict[str, str]:
    """Build the global property layer: config properties, then CLI overrides."""
    props = {
        str(k): to_property_value(resolve_value(v, env))
        for k, v in (config.get("properties") or {}).items()
    }
    if overrides:
        props.update(overrides)
    return props


def to_property_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# ── Property store ───────────────────────────────────────────────────────


class PropertyStore(Mapping):
    """Property cache for one chain.

    Layers are merged in the order they are given, so later layers win.
    Once merged, the store only knows final values. It never shrinks.
    """

    def __init__(self):
        self._values: dict[str, str] = {}

    @classmethod
    def from_layers(cls, *layers: Mapping[str, Any] | None) -> "PropertyStore":
        store = cls()
        for layer in layers:
            store.merge(layer)
        return store

    def merge(self, layer: Mapping[str, Any] | None) -> None:
        if not layer:
            return
        for k, v in layer.items():
            self._values[str(k)] = to_property_value(v)

    def get(self, key: str, default: str | None = None) -> str | None:
        return self._values.get(key, default)

    def as_dict(self) -> dict[str, str]:
        return dict(self._values)

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"PropertyStore({self._values!r})"


# ── Template resolution ──────────────────────────────────────────────────


def resolve_template(text: Any, properties: Mapping[str, str]) -> Any:
    """Resolve {name} placeholders in text against properties.

    - {name}   -> property value, or left as-is when unknown
    - {{name}} -> literal {name} (escape, never looked up)
    - {}       -> left as-is

    Substituted values are not scanned again.
    """
    if not isinstance(text, str):
        return text

    def _replace(m: re.Match) -> str:
        token = m.group(0)
        if token.startswith("{{") and token.endswith("}}"):
            return token[1:-1]
        name = m.group(1)
        value = properties.get(name) if name else None
        if value is None:
            return token
        return value

    return _PLACEHOLDER_RE.sub(_replace, text)


# ── Collections ──────────────────────────────────────────────────────────


@dataclass
class Collection:
    """One chain: an ordered list of requests sharing a property store."""

    name: str
    path: Path
    working_dir: Path
    requests: list = field(default_factory=list)
    properties: dict[str, str] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


def load_collection(path: str | Path) -> Collection:
    """Load a single collection file (.json as JSON, anything else as YAML).

    `file:` bodies are resolved relative to the collection's directory.
    A body file that cannot be read is recorded in `errors` and the
    request keeps its unresolved body.
    Raises CollectionError for unreadable or invalid definitions.
    """
    from reqchain.request import BodyFileError, Request

    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            if path.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise CollectionError(f"Failed to read {path}: {e}") from e

    if not isinstance(data, dict):
        raise CollectionError(f"{path}: expected a mapping at the top level")

    if "requests" not in data:
        raise CollectionError(f"{path}: missing required field 'requests'")
    raw_requests = data["requests"] or []
    if not isinstance(raw_requests, list):
        raise CollectionError(f"{path}: 'requests' must be a list")

    properties = data.get("properties") or {}
    if not isinstance(properties, dict):
        raise CollectionError(f"{path}: 'properties' must be a mapping")

    working_dir = path.resolve().parent
    collection = Collection(
        name=str(data.get("name") or path.stem),
        path=path,
        working_dir=working_dir,
        properties={str(k): to_property_value(v) for k, v in properties.items()},
    )

    for idx, raw in enumerate(raw_requests):
        try:
            req = Request.from_dict(raw)
        except CollectionError as e:
            raise CollectionError(f"{path}: request [{idx}]: {e}") from e
        try:
            req = req.load_body_file(working_dir)
        except BodyFileError as e:
            collection.errors.append(f"Failed to update body for {req.uri} [{e}]")
        collection.requests.append(req)

    return collection


def load_collections(root: str | Path) -> tuple[list[Collection], list[str]]:
    """Discover and load every collection under root.

    Walks directories in sorted order. Directories starting with '_'
    hold data files and are skipped, as are hidden entries and config
    files. Returns (collections, errors). A file that fails to load is
    reported in errors and does not stop the others.
    """
    root = Path(root)
    collections: list[Collection] = []
    errors: list[str] = []

    if root.is_file():
        files = [root]
    else:
        files = list(_iter_collection_files(root))

    for f in files:
        try:
            collections.append(load_collection(f))
        except CollectionError as e:
            errors.append(str(e))

    return collections, errors


def _iter_collection_files(directory: Path) -> Iterator[Path]:
    for entry in sorted(directory.iterdir()):
        if entry.name.startswith("."):
            continue
        if entry.is_dir():
            if entry.name.startswith("_"):
                continue
            yield from _iter_collection_files(entry)
        elif entry.suffix in COLLECTION_SUFFIXES and entry.name not in CWD_CONFIG_CANDIDATES:
            yield entry
