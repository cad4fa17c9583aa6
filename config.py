import logging
import math
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tagset import DEFAULT_IGNORE_PATTERN

log = logging.getLogger(Path(__file__).stem)

# Stands in for log(0): below any log relative frequency of a realistic corpus
DEFAULT_FLOOR = -1.0e4


def check_floor_value(v: float) -> float:
    if math.isnan(v) or math.isinf(v) or v >= 0:
        raise ValueError(f"Floor must be a finite negative number, got {v}")
    return v


class DecoderConfig(BaseModel):
    """Settings of the Viterbi decoder.

    Attributes:
        mode: "standard" for textbook first-order Viterbi, "reference" to
            reproduce the original tagger's column-local scoring and
            position-hunting termination.
        floor: Log-probability used for every entry without evidence.
    """

    model_config = ConfigDict(frozen=True)

    mode: Literal["standard", "reference"] = "standard"
    floor: float = DEFAULT_FLOOR

    @field_validator("floor")
    @classmethod
    def check_floor(cls, v: float) -> float:
        return check_floor_value(v)


class TaggerConfig(BaseModel):
    """Settings of the training/evaluation pipeline.

    Built from the upper-case keys of the pipeline dict (``TAGSET_FILE``,
    ``CORPUS_DIR``, ``MODEL_FILE``...) or from the field names.
    """

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    tagset_file: Path = Field(alias="TAGSET_FILE")
    legend_file: Optional[Path] = Field(default=None, alias="LEGEND_FILE")
    default_tag: Optional[str] = Field(default=None, alias="DEFAULT_TAG")
    ignore_pattern: str = Field(default=DEFAULT_IGNORE_PATTERN, alias="IGNORE_PATTERN")

    corpus_dir: Optional[Path] = Field(default=None, alias="CORPUS_DIR")
    test_dir: Optional[Path] = Field(default=None, alias="TEST_DIR")
    model_file: Path = Field(default=Path("models/hmm_model.txt"), alias="MODEL_FILE")
    output_dir: Path = Field(default=Path("results"), alias="OUTPUT_DIR")

    decoder: DecoderConfig = Field(default_factory=DecoderConfig, alias="DECODER")
    show_progress: bool = Field(default=True, alias="SHOW_PROGRESS")

    @classmethod
    def from_dict(cls, config: dict):
        known = set()
        for name, field in cls.model_fields.items():
            known.add(name)
            if field.alias:
                known.add(field.alias)

        current_config = dict()
        for k, v in config.items():
            if k in known:
                current_config[k] = v
            else:
                log.warning(f"Ignoring unknown key '{k}' during {cls.__name__} creation")
        return cls(**current_config)
