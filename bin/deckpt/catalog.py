from __future__ import annotations

import fnmatch
import logging
from collections import ChainMap
from collections.abc import Iterator, MutableMapping
from pathlib import Path
from typing import Any

import jinja2

from deckpt.operation import PackageRequest, PackageSource
from deckpt.yaml_loader import load_yaml

_LOGGER = logging.getLogger(__name__)

MAX_ITERS = 5

JINJA_ENV = jinja2.Environment(undefined=jinja2.StrictUndefined)


def is_list_of_strings(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(x, str) for x in value)


def is_value_type(value: Any) -> bool:
    return isinstance(value, (str, bool, int)) or is_list_of_strings(value)


def _needs_expansion(target: MutableMapping[str, Any]) -> bool:
    for value in target.values():
        if is_list_of_strings(value):
            if any("{{" in v for v in value):
                return True
        elif isinstance(value, str) and "{{" in value:
            return True
    return False


def expand_target(target: MutableMapping[str, Any], context: list[str]) -> dict[str, Any]:
    target = dict(target)
    iterations = 0
    while _needs_expansion(target):
        iterations += 1
        if iterations > MAX_ITERS:
            raise RuntimeError(f"Too many mutual references (in {'/'.join(context)})")
        for key, value in target.items():
            try:
                if is_list_of_strings(value):
                    target[key] = [JINJA_ENV.from_string(x).render(**target) for x in value]
                elif isinstance(value, str):
                    target[key] = JINJA_ENV.from_string(value).render(**target)
            except jinja2.UndefinedError as e:
                raise RuntimeError(f"Unable to expand {key}: {e} (in {'/'.join(context)})") from e
    return target


def _check_if(enabled, node) -> bool:
    if "if" not in node or enabled is True:
        return True
    if isinstance(node["if"], list):
        condition = set(node["if"])
    else:
        condition = {node["if"]}
    return set(enabled).intersection(condition) == condition


def targets_from(node, enabled, base_config=None) -> Iterator[dict[str, Any]]:
    if base_config is None:
        base_config = {}
    return _targets_from(node, enabled, [], "", base_config)


def _targets_from(node, enabled, context, name, base_config):
    if not node:
        return

    if isinstance(node, list):
        for child in node:
            yield from _targets_from(child, enabled, context, name, base_config)
        return

    if not isinstance(node, dict):
        return

    if not _check_if(enabled, node):
        return

    context = context[:]
    if name:
        context.append(name)
    base_config = dict(base_config)
    for key, value in node.items():
        if key not in ("targets", "if") and is_value_type(value):
            base_config[key] = value

    for child_name, child in node.items():
        if child_name != "targets":
            yield from _targets_from(child, enabled, context, child_name, base_config)

    if "targets" in node:
        base_config["context"] = context
        for target in node["targets"]:
            if isinstance(target, str):
                target = {"name": target}
            elif not isinstance(target, dict):
                raise RuntimeError(f"Target {target!r} in {'/'.join(context)} must be a name or a mapping")
            elif not _check_if(enabled, target):
                continue
            yield expand_target(ChainMap(target, base_config), context)


class CatalogEntry:
    """One package the installer knows about, with where it sits in the catalogue."""

    def __init__(self, config: dict[str, Any]):
        self.config = config
        self.target_name = str(config.get("name", "(unnamed)"))
        self.context: list[str] = list(config.get("context", []))
        self.name = f'{"/".join(self.context)} {self.target_name}'
        self.package = str(config.get("package", self.target_name))
        try:
            self.source = PackageSource(config.get("source", PackageSource.REPOSITORY.value))
        except ValueError as e:
            raise RuntimeError(f"Unknown source {config.get('source')!r} for {self.name}") from e
        self.url = config.get("url", "")
        if self.source == PackageSource.SOURCE_BUILD and not self.url:
            raise RuntimeError(f"Source build {self.name} needs a url")
        self.launcher = config.get("launcher", "")
        post_install = config.get("post_install", [])
        self.post_install = tuple([post_install] if isinstance(post_install, str) else post_install)

    def to_request(self) -> PackageRequest:
        return PackageRequest(name=self.package, source=self.source, url=self.url, post_install=self.post_install)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "package": self.package,
            "source": self.source.value,
            "launcher": self.launcher,
        }

    def __repr__(self) -> str:
        return f"CatalogEntry({self.name}, {self.source.value})"


def _context_match(context_query: str, entry: CatalogEntry) -> bool:
    """Match a context query against the entry's context path.

    A leading "/" anchors the match at the root, otherwise the query may match any run of
    path components. Queries containing "*" are globbed against the whole path.
    """
    if "*" in context_query:
        return fnmatch.fnmatch("/".join(entry.context), context_query.lstrip("/"))

    context = context_query.split("/")
    if context[0] == "":
        context = context[1:]
        return entry.context[: len(context)] == context

    for sub in range(0, len(entry.context) - len(context) + 1):
        if entry.context[sub : sub + len(context)] == context:
            return True
    return False


def _target_match(target: str, entry: CatalogEntry) -> bool:
    if target == entry.target_name or target == entry.package:
        return True
    if target.startswith("!"):
        return not _target_match(target[1:], entry)
    return fnmatch.fnmatch(entry.target_name, target)


def filter_match(filter_query: str, entry: CatalogEntry) -> bool:
    """Match a filter query against an entry.

    One word matches the context OR the package name; two words must match context AND name.
    "!word" on its own excludes anything whose context or name matches word.
    """
    split = filter_query.split(" ", 1)
    if len(split) == 1:
        query = split[0]
        if query.startswith("!"):
            positive_query = query[1:]
            return not (_context_match(positive_query, entry) or _target_match(positive_query, entry))
        return _context_match(query, entry) or _target_match(query, entry)
    return _context_match(split[0], entry) and _target_match(split[1], entry)


def filter_aggregate(filters: list, entry: CatalogEntry, filter_match_all: bool = True) -> bool:
    # no filters accepts everything
    if not filters:
        return True
    filter_generator = (filter_match(filt, entry) for filt in filters)
    return all(filter_generator) if filter_match_all else any(filter_generator)


class Catalog:
    def __init__(self, entries: list[CatalogEntry]):
        self.entries = entries

    @classmethod
    def load(cls, yaml_dir: Path, enabled, variables: dict[str, Any] | None = None) -> Catalog:
        """Load every *.yaml under yaml_dir, in file name order then document order."""
        entries = []
        for yaml_path in sorted(yaml_dir.glob("*.yaml")):
            yaml_doc = load_yaml(yaml_path)
            for target in targets_from(yaml_doc, enabled, dict(variables or {})):
                entries.append(CatalogEntry(target))
        _LOGGER.debug("Loaded %d catalogue entries from %s", len(entries), yaml_dir)
        return cls(entries)

    def select(self, filters: list[str], filter_match_all: bool = True) -> list[CatalogEntry]:
        return [entry for entry in self.entries if filter_aggregate(filters, entry, filter_match_all)]

    def find(self, package: str) -> CatalogEntry | None:
        for entry in self.entries:
            if entry.package == package:
                return entry
        return None
