class TaggerError(Exception):
    """Base class for every error raised while building or using a tagger."""


class TagsetLoadError(TaggerError):
    """The tagset (or its legend) is missing or malformed."""


class TagNotFoundError(TaggerError, KeyError):
    """A tag symbol is not part of the loaded tagset."""

    def __init__(self, symbol):
        super().__init__(symbol)
        self.symbol = symbol

    def __str__(self):
        return f"Tag symbol {self.symbol!r} not found in tagset"


class ModelMismatchError(TaggerError):
    """A persisted model disagrees with the loaded tagset."""


class ModelFileIOError(TaggerError):
    """A model file could not be read, parsed or written."""


class CorpusDirectoryError(TaggerError):
    """The corpus path is not a readable directory."""


class CorpusFormatError(TaggerError):
    """A corpus token is not of the form word/TAG."""
