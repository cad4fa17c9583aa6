import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from errors import TagNotFoundError, TagsetLoadError

log = logging.getLogger(Path(__file__).stem)

# Brown corpus title (-tl), headline (-hl), citation (-nc) and foreign word (fw-) markers
DEFAULT_IGNORE_PATTERN = r"(?:-(?:tl|hl|nc))+$|^fw-"


@dataclass(frozen=True)
class Tag:
    index: int
    symbol: str
    term: str = ""

    def __str__(self):
        return self.symbol


class TagRegistry:
    """Immutable mapping between tag symbols, dense indices and descriptive terms.

    Indices run from 0 to ``len(registry) - 1`` in the order the tags were
    given. One tag is the default, assigned to words never seen in training.
    """

    def __init__(
        self,
        tags: List[Tag],
        default_symbol: Optional[str] = None,
        ignore_pattern: str = DEFAULT_IGNORE_PATTERN,
        groups: Optional[Dict[str, List[int]]] = None,
    ):
        if not tags:
            raise TagsetLoadError("Tagset is empty")

        self._tags = tuple(tags)
        self._by_symbol = {}
        for position, tag in enumerate(self._tags):
            if tag.index != position:
                raise TagsetLoadError(
                    f"Tag {tag.symbol!r} has index {tag.index}, expected {position}"
                )
            if tag.symbol in self._by_symbol:
                raise TagsetLoadError(f"Duplicate tag symbol {tag.symbol!r}")
            self._by_symbol[tag.symbol] = tag

        if default_symbol is None:
            self._default = self._tags[-1]
        elif default_symbol in self._by_symbol:
            self._default = self._by_symbol[default_symbol]
        else:
            raise TagsetLoadError(f"Default tag {default_symbol!r} is not in the tagset")

        try:
            self._ignore = re.compile(ignore_pattern)
        except re.error as e:
            raise TagsetLoadError(f"Invalid ignore pattern {ignore_pattern!r}: {e}") from e

        self._group_of = {}
        for name, indices in (groups or {}).items():
            for index in indices:
                if not 0 <= index < len(self._tags):
                    raise TagsetLoadError(
                        f"Legend group {name!r} refers to unknown tag index {index}"
                    )
                if index in self._group_of:
                    raise TagsetLoadError(
                        f"Tag index {index} is in legend groups "
                        f"{self._group_of[index]!r} and {name!r}"
                    )
                self._group_of[index] = name

    @classmethod
    def from_file(
        cls,
        tagset_path,
        legend_path=None,
        default_symbol=None,
        ignore_pattern=DEFAULT_IGNORE_PATTERN,
    ):
        """
        Load a registry from a tagset file and an optional legend file.

        The tagset file holds one ``SYMBOL<TAB>term`` line per tag; the legend
        maps a simplified tag name to a comma-separated list of tag indices.

        Args:
            tagset_path: Path of the tagset file
            legend_path: Path of the legend file, or None
            default_symbol: Symbol of the fallback tag (last tag when None)
            ignore_pattern: Regex stripped from raw corpus tags before lookup

        Returns:
            TagRegistry
        """
        tags = []
        for lineno, line in _read_lines(tagset_path):
            symbol, _, term = line.partition("\t")
            symbol = symbol.strip()
            if not symbol or " " in symbol:
                raise TagsetLoadError(f"{tagset_path}:{lineno}: malformed tag line {line!r}")
            tags.append(Tag(index=len(tags), symbol=symbol, term=term.strip()))

        groups = {}
        if legend_path is not None:
            for lineno, line in _read_lines(legend_path):
                name, sep, indices = line.partition("\t")
                name = name.strip()
                if not sep or not name or not indices.strip() or name in groups:
                    raise TagsetLoadError(f"{legend_path}:{lineno}: malformed legend line {line!r}")
                try:
                    groups[name] = [int(i) for i in indices.split(",") if i.strip()]
                except ValueError as e:
                    raise TagsetLoadError(
                        f"{legend_path}:{lineno}: malformed legend line {line!r}"
                    ) from e

        registry = cls(
            tags,
            default_symbol=default_symbol,
            ignore_pattern=ignore_pattern,
            groups=groups,
        )
        log.info(
            f"Loaded {len(registry)} tags from {tagset_path} (default: {registry.default_tag.symbol})"
        )
        return registry

    def __len__(self):
        return len(self._tags)

    def __iter__(self):
        return iter(self._tags)

    @property
    def num_tags(self) -> int:
        return len(self._tags)

    @property
    def default_tag(self) -> Tag:
        return self._default

    @property
    def ignore_pattern(self) -> re.Pattern:
        return self._ignore

    def index_of(self, symbol: str) -> int:
        try:
            return self._by_symbol[symbol].index
        except KeyError:
            raise TagNotFoundError(symbol) from None

    def tag_at(self, index: int) -> Tag:
        return self._tags[index]

    def normalize(self, raw_symbol: str) -> str:
        """Strip decoration matched by the ignore pattern from a raw corpus tag."""
        return self._ignore.sub("", raw_symbol)

    def group_of(self, tag: Tag) -> str:
        return self._group_of.get(tag.index, tag.symbol)


def _read_lines(path):
    try:
        with open(path, "r", encoding="utf-8") as file:
            lines = [line.rstrip("\r\n") for line in file]
    except OSError as e:
        raise TagsetLoadError(f"Could not read {path}: {e}") from e

    for lineno, line in enumerate(lines, start=1):
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        yield lineno, line
