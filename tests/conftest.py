import math

import numpy as np
import pytest

from hmm import ProbabilityModel
from tagset import Tag, TagRegistry

BROWN_TAGSET = """\
# symbol\tterm
at\tarticle
nn\tnoun, singular, common
nns\tnoun, plural, common
vb\tverb, base form
vbz\tverb, present tense, 3rd person singular
jj\tadjective
.\tsentence terminator
"""

BROWN_LEGEND = """\
NOUN\t1,2
VERB\t3,4
"""


@pytest.fixture
def tagset_file(tmp_path):
    path = tmp_path / "tagset.txt"
    path.write_text(BROWN_TAGSET, encoding="utf-8")
    return path


@pytest.fixture
def legend_file(tmp_path):
    path = tmp_path / "legend.txt"
    path.write_text(BROWN_LEGEND, encoding="utf-8")
    return path


@pytest.fixture
def registry(tagset_file):
    return TagRegistry.from_file(tagset_file, default_symbol="nn")


@pytest.fixture
def corpus_dir(tmp_path):
    root = tmp_path / "corpus"
    (root / "ca").mkdir(parents=True)
    (root / "ca" / "ca01").write_text(
        "The/at dog/nn runs/vbz ./.\nThe/at dogs/nns run/vb ./.\n", encoding="utf-8"
    )
    (root / "cb01").write_text(
        "A/at big/jj dog/nn-tl runs/vbz ./.\n", encoding="utf-8"
    )
    return root


@pytest.fixture
def nv_registry():
    return TagRegistry([Tag(0, "N", "noun"), Tag(1, "V", "verb")], default_symbol="N")


@pytest.fixture
def nv_model():
    floor = -1.0e4
    emission = {
        "dog": [math.log(0.9), floor],
        "runs": [floor, math.log(0.8)],
    }
    transmission = np.log([[0.3, 0.7], [0.6, 0.4]])
    return ProbabilityModel(emission, transmission, floor=floor)
