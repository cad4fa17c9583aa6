import logging
import math
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from config import DEFAULT_FLOOR, DecoderConfig, check_floor_value
from corpus import RawCounts
from errors import ModelFileIOError, ModelMismatchError, TagNotFoundError
from tagset import Tag, TagRegistry

log = logging.getLogger(Path(__file__).stem)


class ProbabilityModel:
    """Log-space emission and transmission tables of a first-order HMM.

    ``emission[word][t]`` is log P(word | t) and ``transmission[i][j]`` is
    log P(j follows i). Entries with no evidence hold ``floor``. The tables
    are read-only once the model is built.
    """

    def __init__(
        self,
        emission: Dict[str, np.ndarray],
        transmission: np.ndarray,
        floor: float = DEFAULT_FLOOR,
    ):
        transmission = np.array(transmission, dtype=np.float64)
        num_tags = transmission.shape[0]
        if transmission.shape != (num_tags, num_tags):
            raise ValueError(f"Transmission matrix must be square, got {transmission.shape}")
        transmission.flags.writeable = False

        self.floor = check_floor_value(floor)
        self.transmission = transmission
        self.emission = {}
        for word, vector in emission.items():
            vector = np.array(vector, dtype=np.float64)
            if vector.shape != (num_tags,):
                raise ValueError(
                    f"Emission vector for {word!r} has shape {vector.shape}, expected ({num_tags},)"
                )
            vector.flags.writeable = False
            self.emission[word] = vector

    @property
    def num_tags(self) -> int:
        return self.transmission.shape[0]

    @property
    def num_words(self) -> int:
        return len(self.emission)

    def __contains__(self, word):
        return word in self.emission

    def get_emission(self, word: str) -> Optional[np.ndarray]:
        return self.emission.get(word)

    @classmethod
    def estimate(cls, counts: RawCounts, floor: float = DEFAULT_FLOOR):
        """
        Build a model from raw counts by tag-conditioned relative frequency.

        Args:
            counts: Word/tag, tag/tag and per-tag counts from a corpus pass
            floor: Value stored where a count is zero

        Returns:
            ProbabilityModel
        """
        marginals = counts.tag_marginal_counts.astype(np.float64)

        emission = {
            word: _log_ratio(word_counts, marginals, floor)
            for word, word_counts in counts.word_tag_counts.items()
        }
        transmission = _log_ratio(
            counts.tag_transition_counts, marginals[:, np.newaxis], floor
        )

        log.info(f"Estimated model over {counts.num_tags} tags and {len(emission)} words")
        return cls(emission, transmission, floor=floor)

    def save(self, filepath, registry: TagRegistry):
        """
        Write the model in its sparse text format. Floor entries are omitted.

        The file is written next to its destination and renamed into place,
        so a failed save never leaves a partial model behind.

        Args:
            filepath: Destination path
            registry: Tagset whose symbols label the transmission rows
        """
        if len(registry) != self.num_tags:
            raise ModelMismatchError(
                f"Model has {self.num_tags} tags but the tagset has {len(registry)}"
            )

        filepath = Path(filepath)
        tmp_path = None
        try:
            filepath.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=filepath.parent,
                prefix=f".{filepath.name}.",
                delete=False,
            ) as f:
                tmp_path = f.name
                f.write(f"{self.num_tags}\n")
                f.write(f"{self.num_words}\n")
                for word, vector in self.emission.items():
                    f.write(f"{word} {self._format_row(vector)}\n")
                for i, row in enumerate(self.transmission):
                    f.write(f"{registry.tag_at(i).symbol} {self._format_row(row)}\n")
            os.replace(tmp_path, filepath)
        except OSError as e:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise ModelFileIOError(f"Could not save model to {filepath}: {e}") from e

        log.info(f"Saved model to {filepath}")

    def _format_row(self, row):
        return " ".join(
            f"{j} {value!r}" for j, value in enumerate(row.tolist()) if value != self.floor
        )

    @classmethod
    def load(cls, filepath, registry: TagRegistry, floor: float = DEFAULT_FLOOR):
        """
        Read a model written by ``save`` and check it against a tagset.

        Args:
            filepath: Path of the model file
            registry: Tagset the model must have been trained with
            floor: Value filled in for every entry the file omits

        Returns:
            ProbabilityModel
        """
        try:
            with open(filepath, "r", encoding="utf-8") as f:
                lines = f.read().splitlines()
        except OSError as e:
            raise ModelFileIOError(f"Could not read model file {filepath}: {e}") from e

        reader = _LineReader(filepath, lines)
        num_tags = reader.next_int()
        num_words = reader.next_int()

        if num_tags != len(registry):
            raise ModelMismatchError(
                f"{filepath} was trained with {num_tags} tags but the tagset has {len(registry)}"
            )

        emission = {}
        for _ in range(num_words):
            word, vector = reader.next_row(num_tags, floor)
            emission[word] = vector

        transmission = np.empty((num_tags, num_tags), dtype=np.float64)
        for i in range(num_tags):
            symbol, row = reader.next_row(num_tags, floor)
            try:
                index = registry.index_of(symbol)
            except TagNotFoundError as e:
                raise ModelMismatchError(f"{filepath}: {e}") from e
            if index != i:
                raise ModelMismatchError(
                    f"{filepath}: transmission row {i} is labelled {symbol!r}, "
                    f"which the tagset puts at index {index}"
                )
            transmission[i] = row

        log.info(f"Loaded model with {num_tags} tags and {num_words} words from {filepath}")
        return cls(emission, transmission, floor=floor)


def _log_ratio(numerator, denominator, floor):
    numerator = np.asarray(numerator, dtype=np.float64)
    result = np.full(np.broadcast(numerator, denominator).shape, floor, dtype=np.float64)
    observed = numerator > 0
    if np.any(observed & (denominator == 0)):
        raise ValueError("Nonzero count for a tag whose marginal count is zero")
    np.log(numerator / np.where(denominator > 0, denominator, 1.0), out=result, where=observed)
    return result


class _LineReader:
    def __init__(self, filepath, lines):
        self.filepath = filepath
        self.lines = lines
        self.lineno = 0

    def _next_line(self):
        if self.lineno >= len(self.lines):
            raise ModelFileIOError(f"{self.filepath}: unexpected end of file")
        line = self.lines[self.lineno]
        self.lineno += 1
        return line

    def next_int(self):
        line = self._next_line()
        try:
            return int(line.strip())
        except ValueError as e:
            raise ModelFileIOError(
                f"{self.filepath}:{self.lineno}: expected an integer, got {line!r}"
            ) from e

    def next_row(self, num_tags, floor):
        fields = self._next_line().split()
        if not fields or len(fields) % 2 == 0:
            raise ModelFileIOError(f"{self.filepath}:{self.lineno}: malformed row")

        label, pairs = fields[0], fields[1:]
        row = np.full(num_tags, floor, dtype=np.float64)
        for index, value in zip(pairs[::2], pairs[1::2]):
            try:
                index, value = int(index), float(value)
            except ValueError as e:
                raise ModelFileIOError(
                    f"{self.filepath}:{self.lineno}: malformed entry {index} {value}"
                ) from e
            if not 0 <= index < num_tags:
                raise ModelMismatchError(
                    f"{self.filepath}:{self.lineno}: tag index {index} out of range"
                )
            if math.isnan(value):
                raise ModelFileIOError(f"{self.filepath}:{self.lineno}: NaN probability")
            row[index] = value
        return label, row


@dataclass
class DecodeLattice:
    """Score and backpointer tables of one decode call, indexed [tag, position]."""

    scores: np.ndarray
    backpointers: np.ndarray
    known: np.ndarray

    @property
    def length(self) -> int:
        return self.scores.shape[1]


class ViterbiDecoder:
    """Most likely tag sequence for a token sequence under a ProbabilityModel.

    ``standard`` mode runs first-order Viterbi with a uniform start.
    ``reference`` mode reproduces the original tagger: every position is
    scored from the transmission and emission tables alone, and the
    terminal tag is hunted across positions along the last tag's row.
    In both modes an unknown word is tagged with the registry's default tag.
    """

    def __init__(
        self,
        model: ProbabilityModel,
        registry: TagRegistry,
        config: Optional[DecoderConfig] = None,
    ):
        if model.num_tags != len(registry):
            raise ModelMismatchError(
                f"Model has {model.num_tags} tags but the tagset has {len(registry)}"
            )
        self.model = model
        self.registry = registry
        config = config or DecoderConfig(floor=model.floor)
        if config.floor != model.floor:
            # the model's floor fills its tables, so it is the one to compare against
            log.warning(
                f"Decoder floor {config.floor} differs from model floor {model.floor}, using the model's"
            )
            config = config.model_copy(update={"floor": model.floor})
        self.config = config

    def decode(self, tokens: Sequence[str]) -> List[Tuple[str, Tag]]:
        """
        Tag a token sequence.

        Args:
            tokens: Raw tokens; each is stripped and lowercased for lookup

        Returns:
            List of (token, Tag) pairs, one per input token
        """
        tokens = list(tokens)
        if not tokens:
            return []

        lattice = self.forward(tokens)
        if self.config.mode == "reference":
            terminal = self._reference_terminal(lattice)
        else:
            terminal = int(np.argmax(lattice.scores[:, -1]))

        path = self._backtrace(lattice, terminal)
        return [(token, self.registry.tag_at(index)) for token, index in zip(tokens, path)]

    def tag(self, tokens: Sequence[str]) -> List[str]:
        return [tag.symbol for _, tag in self.decode(tokens)]

    def forward(self, tokens: Sequence[str]) -> DecodeLattice:
        """Fill the score and backpointer tables for a non-empty token sequence."""
        num_tags, length = self.model.num_tags, len(tokens)
        floor = self.config.floor
        default = self.registry.default_tag.index

        scores = np.full((num_tags, length), floor, dtype=np.float64)
        backpointers = np.zeros((num_tags, length), dtype=np.int64)
        known = np.zeros(length, dtype=bool)

        for i, token in enumerate(tokens):
            emission = self.model.get_emission(token.strip().lower())
            known[i] = emission is not None

            if self.config.mode == "reference":
                if emission is None:
                    scores[default, i] = 0.0
                    backpointers[default, i] = default
                    continue
                # candidates[k, j] = transmission[k][j] + emission[k]
                candidates = self.model.transmission + emission[:, np.newaxis]
                best = candidates.max(axis=0)
                beats_floor = best > floor
                scores[:, i] = np.where(beats_floor, best, floor)
                backpointers[:, i] = np.where(beats_floor, candidates.argmax(axis=0), 0)
            else:
                if emission is None:
                    emission = np.full(num_tags, floor, dtype=np.float64)
                    emission[default] = 0.0
                if i == 0:
                    scores[:, 0] = emission
                    continue
                # candidates[k, j] = score[k][i-1] + transmission[k][j]
                candidates = scores[:, i - 1, np.newaxis] + self.model.transmission
                scores[:, i] = candidates.max(axis=0) + emission
                backpointers[:, i] = candidates.argmax(axis=0)

        return DecodeLattice(scores=scores, backpointers=backpointers, known=known)

    def _reference_terminal(self, lattice: DecodeLattice) -> int:
        # The hunted value is a position used as a tag row, so clamp it to a valid tag.
        last_tag = self.model.num_tags - 1
        hunted = 0
        for i in range(lattice.length):
            if lattice.scores[last_tag, i] > lattice.scores[min(hunted, last_tag), i]:
                hunted = i
        return min(hunted, last_tag)

    def _backtrace(self, lattice: DecodeLattice, terminal: int) -> List[int]:
        default = self.registry.default_tag.index
        path = [0] * lattice.length
        tag = terminal
        for i in range(lattice.length - 1, -1, -1):
            if not lattice.known[i]:
                tag = default
            path[i] = tag
            tag = int(lattice.backpointers[tag, i])
        return path
