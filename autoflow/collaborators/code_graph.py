"""In-memory code knowledge graph with metadata indices."""

import json
import logging
import threading
from pathlib import Path
from typing import Optional

from autoflow.schema import CodeUnit

logger = logging.getLogger(__name__)


class CodeGraphStore:
    """Code units and their dependency edges, indexed by repository and domain.

    Units are loaded from JSONL (one CodeUnit per line). Reverse edges
    (dependents) are derived from each unit's ``dependencies`` list.
    """

    def __init__(self, units: Optional[list[CodeUnit]] = None):
        self._units: dict[str, CodeUnit] = {}
        self._by_repo: dict[str, set[str]] = {}
        self._by_domain: dict[str, set[str]] = {}
        self._by_name: dict[tuple[str, str], str] = {}  # (repo, qualified_name) -> id
        self._dependents: dict[str, set[str]] = {}
        self._write_lock = threading.Lock()
        if units:
            self.add_units(units)

    def add_units(self, units: list[CodeUnit]) -> None:
        """Add or replace units and rebuild the reverse-edge index."""
        with self._write_lock:
            merged = dict(self._units)
            merged.update((unit.id, unit) for unit in units)
            self._rebuild(merged)

    def replace_repo(self, repo: str, units: list[CodeUnit]) -> None:
        """Swap every unit of a repository for ``units`` in one rebuild."""
        with self._write_lock:
            merged = {uid: unit for uid, unit in self._units.items() if unit.repo != repo}
            merged.update((unit.id, unit) for unit in units)
            self._rebuild(merged)

    def _rebuild(self, units: dict[str, CodeUnit]) -> None:
        # Built aside and then swapped in, so readers never see a half-filled index
        by_repo: dict[str, set[str]] = {}
        by_domain: dict[str, set[str]] = {}
        by_name: dict[tuple[str, str], str] = {}
        dependents: dict[str, set[str]] = {}

        for unit in units.values():
            by_repo.setdefault(unit.repo, set()).add(unit.id)
            if unit.domain:
                by_domain.setdefault(unit.domain.lower(), set()).add(unit.id)
            by_name[(unit.repo, unit.qualified_name)] = unit.id
            for dependency in unit.dependencies:
                dependents.setdefault(dependency, set()).add(unit.id)

        self._units, self._by_repo, self._by_domain, self._by_name, self._dependents = (
            units,
            by_repo,
            by_domain,
            by_name,
            dependents,
        )

    def remove_repo(self, repo: str) -> int:
        """Drop every unit of a repository. Returns the number removed."""
        removed = len(self._by_repo.get(repo, set()))
        self.replace_repo(repo, [])
        return removed

    def get_unit(self, unit_id: str) -> Optional[CodeUnit]:
        return self._units.get(unit_id)

    def find_unit(self, qualified_name: str, repo_scope: str) -> Optional[CodeUnit]:
        """Look up a unit by qualified name, falling back to a unique name suffix."""
        unit_id = self._by_name.get((repo_scope, qualified_name))
        if unit_id:
            return self._units[unit_id]

        suffix = "." + qualified_name
        matches = [
            self._units[uid]
            for uid in self._by_repo.get(repo_scope, set())
            if self._units[uid].qualified_name.endswith(suffix)
        ]
        if len(matches) == 1:
            return matches[0]
        return None

    def find_by_domain(self, domains: set[str], repo_scope: str) -> list[CodeUnit]:
        """Type-level units whose domain tag is one of ``domains``."""
        repo_ids = self._by_repo.get(repo_scope, set())
        ids: set[str] = set()
        for domain in domains:
            ids |= self._by_domain.get(domain.lower(), set())
        units = [self._units[uid] for uid in ids & repo_ids if self._units[uid].parent_id is None]
        return sorted(units, key=lambda u: u.qualified_name)

    def direct_dependencies(self, unit_id: str, repo_scope: str) -> list[str]:
        unit = self._units.get(unit_id)
        if unit is None or unit.repo != repo_scope:
            return []
        return list(unit.dependencies)

    def direct_dependents(self, unit_id: str, repo_scope: str) -> list[str]:
        repo_ids = self._by_repo.get(repo_scope, set())
        return sorted(self._dependents.get(unit_id, set()) & repo_ids)

    def units_for_repo(self, repo: str) -> list[CodeUnit]:
        return [self._units[uid] for uid in sorted(self._by_repo.get(repo, set()))]

    @property
    def size(self) -> int:
        return len(self._units)

    def load_jsonl(self, path: Path) -> list[CodeUnit]:
        """Load units from a JSONL file and add them to the graph."""
        units = []
        with open(path) as f:
            for line in f:
                line = line.strip()
                if line:
                    units.append(CodeUnit(**json.loads(line)))
        self.add_units(units)
        logger.info("Loaded %d code units from %s", len(units), path)
        return units

    def save_jsonl(self, path: Path) -> None:
        """Write every unit to a JSONL file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            for unit in self._units.values():
                f.write(unit.model_dump_json() + "\n")
