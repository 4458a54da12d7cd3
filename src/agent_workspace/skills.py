"""Skill discovery, metadata checks and conflict-free naming.

Naming rules, applied per skill folder name across all plugins in a sync pass:

1. A folder name used by exactly one plugin is kept as is.
2. When several plugins share a folder name and their display names differ,
   each becomes ``<plugin>-<folder>``.
3. When two entries share both the folder name and the plugin display name,
   the entry whose resolved plugin path sorts first keeps ``<plugin>-<folder>``
   and the rest get ``<plugin>-<folder>-<id>``, where ``<id>`` is the first six
   hex digits of the SHA-256 of the plugin path.

The result depends only on the set of entries, never on their order.
"""

import hashlib
import logging
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

import yaml

from agent_workspace.validator import ValidatedPlugin

logger = logging.getLogger(__name__)

SKILLS_DIR = "skills"
SKILL_FILE = "SKILL.md"
MAX_SKILL_NAME_LENGTH = 128


@dataclass(frozen=True)
class SkillEntry:
    folder_name: str
    plugin_name: str
    plugin_reference: str
    plugin_path: Path

    @property
    def key(self) -> Tuple[str, str]:
        return (str(self.plugin_path), self.folder_name)

    @property
    def disable_key(self) -> str:
        return f"{self.plugin_name}:{self.folder_name}"

    @property
    def skill_path(self) -> Path:
        return self.plugin_path / SKILLS_DIR / self.folder_name


# (plugin path, folder name) -> resolved name
SkillNameResolution = Dict[Tuple[str, str], str]


def short_id(value: str) -> str:
    """Six hex characters of SHA-256, stable across runs."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:6]


def collect_skills(
    plugins: Iterable[ValidatedPlugin],
    disabled: Optional[Set[str]] = None,
    warnings: Optional[List[str]] = None,
) -> List[SkillEntry]:
    """List skill folders of every valid plugin, minus disabled ``plugin:skill`` keys.

    A skills directory that cannot be listed is reported in ``warnings`` (when
    given) and skipped.
    """
    disabled = disabled or set()
    entries: List[SkillEntry] = []
    seen: Set[Tuple[str, str]] = set()

    for plugin in plugins:
        if not plugin.ok or plugin.resolved_path is None:
            continue
        skills_dir = plugin.resolved_path / SKILLS_DIR
        if not skills_dir.is_dir():
            continue
        try:
            children = sorted(skills_dir.iterdir())
        except OSError as e:
            logger.warning("Could not list skills of %s: %s", plugin.reference, e)
            if warnings is not None:
                warnings.append(f"{plugin.reference}: could not list skills: {e}")
            continue
        for skill_dir in children:
            if not skill_dir.is_dir() or skill_dir.name.startswith("."):
                continue
            entry = SkillEntry(
                folder_name=skill_dir.name,
                plugin_name=plugin.display_name or plugin.resolved_path.name,
                plugin_reference=plugin.reference,
                plugin_path=plugin.resolved_path,
            )
            if entry.disable_key in disabled:
                logger.debug("Skipping disabled skill %s", entry.disable_key)
                continue
            # The same directory referenced twice contributes once
            if entry.key in seen:
                continue
            seen.add(entry.key)
            entries.append(entry)

    return entries


def resolve_skill_names(entries: Iterable[SkillEntry]) -> SkillNameResolution:
    entries = sorted(set(entries), key=lambda e: (e.folder_name, e.plugin_name, str(e.plugin_path)))
    names: SkillNameResolution = {}
    renamed: Set[Tuple[str, str]] = set()

    by_folder: Dict[str, List[SkillEntry]] = defaultdict(list)
    for entry in entries:
        by_folder[entry.folder_name].append(entry)

    for folder, group in by_folder.items():
        if len(group) == 1:
            names[group[0].key] = folder
            continue

        by_plugin: Dict[str, List[SkillEntry]] = defaultdict(list)
        for entry in group:
            by_plugin[entry.plugin_name].append(entry)

        for plugin_name, same_plugin in by_plugin.items():
            base = f"{plugin_name}-{folder}"
            same_plugin.sort(key=lambda e: str(e.plugin_path))
            names[same_plugin[0].key] = base
            renamed.add(same_plugin[0].key)
            for entry in same_plugin[1:]:
                names[entry.key] = f"{base}-{short_id(str(entry.plugin_path))}"
                renamed.add(entry.key)

    # A qualified name can still clash with an unrelated folder name
    # (plugin "a" folder "b-c" vs plugin "a-b" folder "c").
    for _ in range(len(names) + 1):
        by_name: Dict[str, List[Tuple[str, str]]] = defaultdict(list)
        for key, name in names.items():
            by_name[name].append(key)
        clashes = [keys for keys in by_name.values() if len(keys) > 1]
        if not clashes:
            break
        for keys in clashes:
            movable = [k for k in keys if k in renamed] or keys[1:]
            for key in movable:
                names[key] = f"{names[key]}-{short_id('/'.join(key) + ':' + names[key])}"
                renamed.add(key)

    return names


def get_resolved_name(resolution: SkillNameResolution, entry: SkillEntry) -> str:
    return resolution.get(entry.key, entry.folder_name)


# =============================================================================
# SKILL.md metadata
# =============================================================================

def read_frontmatter(path: Path) -> Optional[dict]:
    """Parse the leading ``---`` YAML block of a markdown file."""
    text = path.read_text(encoding="utf-8")
    if not text.startswith("---"):
        return None
    lines = text.splitlines()
    for i, line in enumerate(lines[1:], start=1):
        if line.strip() == "---":
            data = yaml.safe_load("\n".join(lines[1:i]))
            return data if isinstance(data, dict) else None
    return None


def validate_skill_metadata(skill_dir: Path) -> List[str]:
    """Check a skill's SKILL.md. Returns a list of problems, empty when valid."""
    skill_file = Path(skill_dir) / SKILL_FILE
    if not skill_file.is_file():
        return [f"{SKILL_FILE} not found in {skill_dir}"]

    try:
        meta = read_frontmatter(skill_file)
    except yaml.YAMLError as e:
        return [f"Invalid YAML frontmatter in {skill_file}: {e}"]
    except (OSError, UnicodeDecodeError) as e:
        return [f"Cannot read {skill_file}: {e}"]

    if not meta:
        return [f"{SKILL_FILE} must have YAML frontmatter with name and description"]

    problems = []
    name = meta.get("name")
    if not isinstance(name, str) or not name.strip():
        problems.append("name: Skill name is required")
    elif len(name) > MAX_SKILL_NAME_LENGTH:
        problems.append("name: Skill name too long")

    description = meta.get("description")
    if not isinstance(description, str) or not description.strip():
        problems.append("description: Description is required")

    tools = meta.get("allowed-tools")
    if tools is not None and (not isinstance(tools, list) or not all(isinstance(t, str) for t in tools)):
        problems.append("allowed-tools: expected a list of strings")

    model = meta.get("model")
    if model is not None and not isinstance(model, str):
        problems.append("model: expected a string")

    return problems
