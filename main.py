#!/usr/bin/env python3
"""Train, evaluate and run an HMM part-of-speech tagger."""
import argparse
import logging
import os
import re
import sys
from collections import Counter
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns
from sklearn.metrics import confusion_matrix, precision_recall_fscore_support

from config import DecoderConfig, TaggerConfig
from corpus import CorpusFrequencyCollector, iter_corpus_files, read_tagged_file
from errors import TaggerError
from hmm import ProbabilityModel, ViterbiDecoder
from tagset import TagRegistry

log = logging.getLogger(Path(__file__).stem)


class POSTagger:
    def __init__(self, config):
        if not isinstance(config, TaggerConfig):
            config = TaggerConfig.from_dict(config)
        self.config = config
        self.registry = TagRegistry.from_file(
            config.tagset_file,
            legend_path=config.legend_file,
            default_symbol=config.default_tag,
            ignore_pattern=config.ignore_pattern,
        )
        self.model = None
        self.decoder = None

    def tokenize_sentence(self, sentence):
        return re.findall(r"\b\w+\b|[^\w\s]", sentence)

    def evaluate_model(self, true_tags, pred_tags, all_tags):
        true_flat = [tag for sent in true_tags for tag in sent]
        pred_flat = [tag for sent in pred_tags for tag in sent]
        if not true_flat:
            raise ValueError("Cannot evaluate on an empty test corpus")

        precision, recall, f1, _ = precision_recall_fscore_support(
            true_flat, pred_flat, average="weighted", zero_division=0
        )
        accuracy = sum(t == p for t, p in zip(true_flat, pred_flat)) / len(true_flat)
        cm = confusion_matrix(true_flat, pred_flat, labels=all_tags)

        return {"precision": precision, "recall": recall, "f1": f1, "accuracy": accuracy, "confusion_matrix": cm}

    def plot_confusion_matrix(self, cm, classes, normalize=False, title="Confusion Matrix", cmap=plt.cm.Blues):
        if normalize:
            with np.errstate(invalid="ignore", divide="ignore"):
                cm = cm.astype("float") / cm.sum(axis=1)[:, np.newaxis]
                cm = np.nan_to_num(cm)
        plt.figure(figsize=(10, 8))
        sns.heatmap(
            cm, annot=True, fmt=".2f" if normalize else "d", cmap=cmap,
            xticklabels=classes, yticklabels=classes
        )
        plt.title(title)
        plt.ylabel("True Label")
        plt.xlabel("Predicted Label")
        plt.tight_layout()
        plt.savefig(self._output_path(title))
        plt.close()
        log.info(f"Saved {title}")

    def plot_tag_distribution(self, tag_counts, title="Tag Distribution"):
        if not tag_counts:
            log.warning(f"No tags found in dataset for {title}")
            return
        sorted_tags = sorted(tag_counts.items(), key=lambda x: x[1], reverse=True)
        tags, counts = zip(*sorted_tags)
        plt.figure(figsize=(12, 6))
        plt.bar(tags, counts)
        plt.xticks(rotation=45, ha="right")
        plt.title(title)
        plt.xlabel("POS Tags")
        plt.ylabel("Frequency")
        plt.tight_layout()
        plt.savefig(self._output_path(title))
        plt.close()
        log.info(f"Saved {title}")

    def _output_path(self, title):
        os.makedirs(self.config.output_dir, exist_ok=True)
        return os.path.join(self.config.output_dir, f"{title.replace(' ', '_').lower()}.png")

    def train_model(self, plot=True):
        if self.config.corpus_dir is None:
            raise ValueError("CORPUS_DIR is required for training")

        collector = CorpusFrequencyCollector(self.registry, show_progress=self.config.show_progress)
        counts = collector.collect(self.config.corpus_dir)
        if plot:
            tag_counts = {
                self.registry.tag_at(i).symbol: int(c)
                for i, c in enumerate(counts.tag_marginal_counts) if c > 0
            }
            self.plot_tag_distribution(tag_counts, title="POS Tag Distribution - Training Data")

        self.model = ProbabilityModel.estimate(counts, floor=self.config.decoder.floor)
        self.model.save(self.config.model_file, self.registry)
        self.decoder = ViterbiDecoder(self.model, self.registry, self.config.decoder)
        log.info("Training complete. Model saved.")
        return self.model

    def load_model(self):
        self.model = ProbabilityModel.load(
            self.config.model_file, self.registry, floor=self.config.decoder.floor
        )
        self.decoder = ViterbiDecoder(self.model, self.registry, self.config.decoder)
        return self.model

    def _read_test_corpus(self):
        words, true_tags = [], []
        for filepath in iter_corpus_files(self.config.test_dir):
            pairs = list(read_tagged_file(filepath, self.registry))
            if not pairs:
                continue
            file_words, file_tags = zip(*pairs)
            words.append(list(file_words))
            true_tags.append([self.registry.group_of(self.registry.tag_at(t)) for t in file_tags])
        return words, true_tags

    def test_model(self, plot=True):
        if self.config.test_dir is None:
            raise ValueError("TEST_DIR is required for testing")
        if self.decoder is None:
            self.load_model()

        words, true_tags = self._read_test_corpus()
        pred_tags = [
            [self.registry.group_of(tag) for _, tag in self.decoder.decode(sentence)]
            for sentence in words
        ]
        all_tags = sorted({tag for sent in true_tags + pred_tags for tag in sent})

        results = self.evaluate_model(true_tags, pred_tags, all_tags)
        if plot:
            self.plot_tag_distribution(
                Counter(tag for sent in true_tags for tag in sent),
                title="POS Tag Distribution - Test Data",
            )
            self.plot_confusion_matrix(
                results["confusion_matrix"], all_tags, normalize=True, title="HMM Confusion Matrix"
            )

        log.info(f"HMM - Precision: {results['precision']:.4f}, "
                 f"Recall: {results['recall']:.4f}, "
                 f"F1: {results['f1']:.4f}, "
                 f"Accuracy: {results['accuracy']:.4f}")
        return results

    def tag_sentence(self, sentence):
        if self.decoder is None:
            self.load_model()
        return self.decoder.decode(self.tokenize_sentence(sentence))


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=["train", "test", "tag"], help="What to do")
    parser.add_argument("text", nargs="*", help="Text to tag (tag command only)")
    parser.add_argument("--tagset", type=Path, required=True, help="Tagset file: SYMBOL<TAB>term per line")
    parser.add_argument("--legend", type=Path, default=None, help="Legend of simplified tags")
    parser.add_argument("--default-tag", default=None, help="Tag for unknown words (default: last tag)")
    parser.add_argument("--corpus", type=Path, default=None, help="Training corpus directory")
    parser.add_argument("--test-corpus", type=Path, default=None, help="Tagged test corpus directory")
    parser.add_argument("--model", type=Path, default=Path("models/hmm_model.txt"), help="Model file")
    parser.add_argument("--output", type=Path, default=Path("results"), help="Directory for plots")
    parser.add_argument("--mode", choices=["standard", "reference"], default="standard",
                        help="Viterbi variant (default: standard)")
    parser.add_argument("--floor", type=float, default=None, help="Log-probability for unseen events")
    parser.add_argument("--no-progress", action="store_true", help="Hide progress bars")

    # for verbosity of logging
    parser.set_defaults(logging_level=logging.INFO)
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument(
        "-v", "--verbose", dest="logging_level", action="store_const", const=logging.DEBUG
    )
    verbosity.add_argument(
        "-q", "--quiet", dest="logging_level", action="store_const", const=logging.WARNING
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=args.logging_level)

    decoder = {"mode": args.mode}
    if args.floor is not None:
        decoder["floor"] = args.floor

    try:
        tagger = POSTagger({
            "TAGSET_FILE": args.tagset,
            "LEGEND_FILE": args.legend,
            "DEFAULT_TAG": args.default_tag,
            "CORPUS_DIR": args.corpus,
            "TEST_DIR": args.test_corpus,
            "MODEL_FILE": args.model,
            "OUTPUT_DIR": args.output,
            "DECODER": DecoderConfig(**decoder),
            "SHOW_PROGRESS": not args.no_progress,
        })
        if args.command == "train":
            tagger.train_model()
        elif args.command == "test":
            tagger.test_model()
        else:
            text = " ".join(args.text) if args.text else sys.stdin.read()
            print(" ".join(f"{token}/{tag.symbol}" for token, tag in tagger.tag_sentence(text)))
    except (TaggerError, ValueError) as e:
        log.error(str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
