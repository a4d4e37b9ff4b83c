"""reqchain CLI - run chained HTTP request collections."""

import sys
from pathlib import Path

import click

from reqchain.core import resolve_template

TOOL_HELP = """\
reqchain: run ordered HTTP request collections with value chaining.

Each collection is a chain: its requests run in the order they are
declared, and values extracted from one response are available to the
templates of every later request in the same collection.

\b
USAGE
─────
  reqchain                        # every collection under CWD
  reqchain collections/           # every collection under a directory
  reqchain collections/users.yaml # a single collection file
  reqchain --list collections/    # show what would run

\b
COLLECTION FILE FORMAT (*.yaml, *.yml, *.json)
──────────────────────────────────────────────
  \b
  name: users                     # optional, defaults to file name
  properties:                     # collection-wide properties
    base: http://localhost:3000
  requests:
    - uri: "{base}/api/login"
      verb: POST                  # GET | POST | DELETE | PUT | PATCH
      headers:
        Content-Type: application/json
      body: '{"user": "{username}"}'
      properties:                 # this request only
        username: admin
      extract:
        token: json:data.token
        session: header:X-Session
    - uri: "{base}/api/users/{{id}}"
      verb: GET
      headers:
        Authorization: "Bearer {token}"
    - uri: "{base}/api/upload"
      verb: POST
      content_type: Binary        # body sent as-is, no substitution
      body: file:_data/photo.jpg  # relative to the collection file

  Directories whose name starts with '_' are never scanned for
  collections, so they are a good home for body files.

\b
PLACEHOLDERS
────────────
  \b
  {name}     Property value. Left as-is when the property is unknown.
  {{name}}   Literal {name}. Never looked up.

  Substituted values are not scanned again.

\b
PROPERTY PRECEDENCE
───────────────────
  When the same name appears in multiple sources:
  \b
  1. request properties      (highest priority)
  2. extracted values        (from earlier responses in the chain)
  3. collection properties
  4. -p key=value            (CLI flag)
  5. config properties       (lowest)

\b
EXTRACTION (extract:)
─────────────────────
  \b
  json:a.b.c          Nested key
  json:items[0].id    Array index (0-based) on a key
  header:ETag         Response header, exact and case-sensitive

  JSON strings are extracted without quotes. Numbers, booleans, null,
  objects and arrays come back as compact JSON text.
  A failed extraction only skips that property; the chain keeps going.

\b
CONFIG FILE FORMAT (.reqchain.yaml)
───────────────────────────────────
  Config resolution order:
    1. -c/--config flag (explicit path)
    2. .reqchain.yaml / .reqchain.yml / reqchain.yaml / reqchain.yml in CWD
    3. ~/.reqchain/config.yaml (global)

  \b
  defaults:
    env_file: .env                  # load .env file (relative to config)
    timeout: 30                     # seconds
    headers:                        # sent with every request
      Accept: application/json
  properties:
    base: ${API_BASE_URL}           # env var resolved at startup

\b
OUTPUT FORMAT
─────────────
  \b
  --- users [0] POST http://localhost:3000/api/login
  STATUS: 200
  TIME: 45ms
  EXTRACTED: token=abc123

  --verbose adds response headers and body.
  Exit code is 1 when any request could not be sent.
"""


@click.command(
    cls=click.Command,
    help=TOOL_HELP,
    context_settings={"max_content_width": 88},
)
@click.argument("path", required=False, default=".")
@click.option(
    "-c",
    "--config",
    "config_file",
    default=None,
    help="Config file path. Default: .reqchain.yaml in CWD, then ~/.reqchain/config.yaml.",
)
@click.option(
    "-p",
    "--property",
    "properties",
    multiple=True,
    help="Global property as key=value. Overrides config properties. Repeatable.",
)
@click.option(
    "--timeout",
    type=int,
    default=None,
    help="Request timeout in seconds. Default: 30.",
)
@click.option(
    "--verbose",
    is_flag=True,
    default=False,
    help="Include response headers and body in output.",
)
@click.option(
    "--stop-on-error",
    is_flag=True,
    default=False,
    help="Stop a collection at its first failed request instead of continuing.",
)
@click.option(
    "--list",
    "show_list",
    is_flag=True,
    default=False,
    help="List collections and their requests without running them.",
)
def main(
    path,
    config_file,
    properties,
    timeout,
    verbose,
    stop_on_error,
    show_list,
):
    """Run every collection found at PATH."""
    from reqchain.core import (
        PropertyStore,
        build_global_properties,
        load_collections,
        load_config,
        load_env,
        parse_assignments,
        resolve_config_path,
    )
    from reqchain.executor import execute_request
    from reqchain.extractors import extract

    # --- Load config ---
    config_path = resolve_config_path(config_file)
    config = load_config(config_path)
    defaults = config.get("defaults", {})

    env = load_env(defaults.get("env_file"), config.get("_config_dir"))
    global_props = build_global_properties(config, env, parse_assignments(properties))

    # --- Load collections ---
    root = Path(path)
    if not root.exists():
        click.echo(f"ERROR: Collection path not found: {root}", err=True)
        sys.exit(1)

    collections, load_errors = load_collections(root)
    for err in load_errors:
        click.echo(f"ERROR: {err}", err=True)

    if not collections:
        click.echo(f"No collections found in: {root}", err=True)
        sys.exit(1)

    if show_list:
        _cmd_list(collections)
        return

    # --- Run each collection as its own chain ---
    total = 0
    failed = 0
    for collection in collections:
        for err in collection.errors:
            click.echo(f"ERROR: {err}", err=True)
        store = PropertyStore.from_layers(global_props, collection.properties)
        sent, errors = _run_collection(
            collection,
            store,
            defaults,
            timeout,
            verbose,
            stop_on_error,
            execute_request,
            extract,
        )
        total += sent
        failed += errors

    click.echo(f"\n{total} requests, {failed} failed")
    if failed:
        sys.exit(1)


# ── Subcommand implementations ──────────────────────────────────────────


def _cmd_list(collections):
    click.echo(f"{len(collections)} collections:\n")
    for collection in collections:
        click.echo(f"  {collection.name} ({collection.path})")
        for idx, req in enumerate(collection.requests):
            detail = f"    [{idx}] {req.verb.value} {req.uri}"
            if req.extract:
                detail += f" | extract: {', '.join(req.extract.keys())}"
            click.echo(detail)
        click.echo()


def _run_collection(
    collection,
    store,
    defaults,
    timeout,
    verbose,
    stop_on_error,
    execute_request,
    extract,
):
    """Execute a collection's requests in order, feeding extractions forward.

    Returns (requests_sent, requests_failed).
    """
    sent = 0
    failed = 0
    default_headers = defaults.get("headers") or {}

    click.echo(f"Running collection: {collection.name} ({collection.path})")

    for idx, req in enumerate(collection.requests):
        lookup = req.lookup(store)
        url = req.resolved_uri(store)
        headers = {k: resolve_template(str(v), lookup) for k, v in default_headers.items()}
        headers.update(req.resolved_headers(store))

        click.echo(f"--- {collection.name} [{idx}] {req.verb.value} {url}")
        result = execute_request(
            method=req.verb.value,
            url=url,
            headers=headers,
            body=req.resolved_body(store),
            timeout=_resolve_timeout(timeout, defaults.get("timeout")),
        )
        sent += 1

        if result.error:
            failed += 1
            click.echo(f"ERROR: {result.error}", err=True)
            if stop_on_error:
                click.echo(
                    f"Stopping collection {collection.name} after request [{idx}]",
                    err=True,
                )
                break
            continue

        click.echo(f"STATUS: {result.status_code}")
        click.echo(f"TIME: {int(result.elapsed_ms)}ms")

        if req.extract:
            extracted = extract(req.extract, result)
            store.merge(extracted.values)
            for name, value in extracted.values.items():
                click.echo(f"EXTRACTED: {name}={value}")
            for name, message in extracted.errors.items():
                click.echo(f"EXTRACT FAILED [{name}]: {message}", err=True)

        if verbose:
            _echo_response(result)

    return sent, failed


# ── Helpers ──────────────────────────────────────────────────────────────


def _resolve_timeout(*sources, default=30):
    """Return the first truthy timeout from sources, or default."""
    for t in sources:
        if t:
            return t
    return default


def _echo_response(result):
    if result.headers:
        click.echo("HEADERS:")
        for key, value in result.headers.items():
            click.echo(f"  {key}: {value}")
    if result.body:
        click.echo("BODY:")
        try:
            click.echo(result.body.decode("utf-8"))
        except UnicodeDecodeError:
            click.echo(result.body.hex(" "))
