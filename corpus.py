import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Tuple

import numpy as np
from tqdm import tqdm

from errors import CorpusDirectoryError, CorpusFormatError
from tagset import TagRegistry

log = logging.getLogger(Path(__file__).stem)


@dataclass
class RawCounts:
    """Co-occurrence counts gathered in one pass over a corpus."""

    word_tag_counts: Dict[str, np.ndarray]
    tag_transition_counts: np.ndarray
    tag_marginal_counts: np.ndarray

    @classmethod
    def empty(cls, num_tags):
        return cls(
            word_tag_counts={},
            tag_transition_counts=np.zeros((num_tags, num_tags), dtype=np.int64),
            tag_marginal_counts=np.zeros(num_tags, dtype=np.int64),
        )

    @property
    def num_tags(self) -> int:
        return len(self.tag_marginal_counts)


def split_token(token: str) -> Tuple[str, str]:
    """Split a ``word/TAG`` token at its last slash."""
    word, sep, symbol = token.rpartition("/")
    if not sep or not word or not symbol:
        raise CorpusFormatError(f"Token {token!r} is not of the form word/TAG")
    return word, symbol


def iter_corpus_files(corpus_dir) -> List[Path]:
    """
    List every regular file below a corpus directory, recursively.

    Args:
        corpus_dir: Root directory of the corpus

    Returns:
        Sorted list of file paths
    """
    root = Path(corpus_dir)
    if not root.is_dir():
        raise CorpusDirectoryError(f"Corpus path {str(root)!r} is not a directory")
    try:
        return sorted(path for path in root.rglob("*") if path.is_file())
    except OSError as e:
        raise CorpusDirectoryError(f"Could not list {str(root)!r}: {e}") from e


def read_tagged_file(filepath, registry: TagRegistry) -> Iterator[Tuple[str, int]]:
    """
    Read a corpus file as (lowercased word, tag index) pairs.

    Args:
        filepath: Path of a file of whitespace-separated word/TAG tokens
        registry: Tagset used to resolve tag symbols

    Yields:
        (word, tag index) tuples in file order
    """
    try:
        with open(filepath, "r", encoding="utf-8") as file:
            text = file.read()
    except OSError as e:
        raise CorpusDirectoryError(f"Could not read corpus file {filepath}: {e}") from e

    for token in text.split():
        word, symbol = split_token(token)
        yield word.lower(), registry.index_of(registry.normalize(symbol))


class CorpusFrequencyCollector:
    """Accumulates word/tag and tag/tag counts over tagged corpus files.

    Transitions are only counted between neighbouring tokens of the same
    file. The first token of a file has no predecessor and no start state
    is modelled, so each file boundary drops exactly one transition.
    """

    def __init__(self, registry: TagRegistry, show_progress=True):
        self.registry = registry
        self.show_progress = show_progress
        self.counts = RawCounts.empty(len(registry))
        self.num_files = 0
        self.num_tokens = 0

    def add_file(self, filepath):
        previous = None
        for word, tag_index in read_tagged_file(filepath, self.registry):
            if word not in self.counts.word_tag_counts:
                self.counts.word_tag_counts[word] = np.zeros(
                    self.counts.num_tags, dtype=np.int64
                )
            self.counts.word_tag_counts[word][tag_index] += 1
            self.counts.tag_marginal_counts[tag_index] += 1
            if previous is not None:
                self.counts.tag_transition_counts[previous, tag_index] += 1
            previous = tag_index
            self.num_tokens += 1
        self.num_files += 1

    def collect(self, corpus_dir) -> RawCounts:
        """
        Count every file under a corpus directory.

        Any malformed token or unknown tag aborts the whole run.

        Args:
            corpus_dir: Root directory of the corpus

        Returns:
            RawCounts for the files seen so far
        """
        files = iter_corpus_files(corpus_dir)
        log.info(f"Collecting counts from {len(files)} files under {corpus_dir}")

        for filepath in tqdm(
            files, desc="Counting", unit="file", disable=not self.show_progress
        ):
            log.debug(f"Reading {filepath}")
            self.add_file(filepath)

        log.info(
            f"Counted {self.num_tokens} tokens, {len(self.counts.word_tag_counts)} distinct words"
        )
        return self.counts
