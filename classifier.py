"""Category classifier for complaint descriptions.

A small intent matcher trained on a fixed list of example phrases. Training
runs once, before the application starts serving, through
``build_classifier``; the returned handle is then shared read-only by every
request.
"""

import logging
from typing import Dict, List, NamedTuple, Tuple

from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.naive_bayes import MultinomialNB
from sklearn.pipeline import Pipeline

from schemas import Category

log = logging.getLogger(__name__)

TRAINING_PHRASES: Dict[str, List[str]] = {
    "category.hygiene": [
        "garbage", "trash", "waste", "litter", "dumpster", "rubbish",
        "garbage on the street", "waste bin overflowing", "trash not collected",
        "public bathroom is dirty", "smell of rotten food", "dumpster is full",
        "need street sweeping", "litter everywhere", "overflowing drain",
        "dirty public toilet", "rats and pests due to trash", "uncollected garbage bags",
        "bad smell from sewage", "public urination spot", "waste disposal issue",
        "collection failed", "bins are full", "filthy sidewalk", "sanitation problem",
        "dead animal on road", "public sanitation",
    ],
    "category.roads": [
        "pothole", "potholes", "streetlight", "street light", "traffic light",
        "broken streetlight", "street light is out", "pothole on the road",
        "crack in the pavement", "road is damaged", "traffic light is not working",
        "broken sign", "roadblock needs to be removed", "deep pothole",
        "traffic signal is stuck on red", "faded road markings", "street sign is missing",
        "uneven road surface", "damaged guardrail", "sidewalk is broken", "road needs repair",
        "light is out", "road construction left debris", "manhole cover is loose",
        "broken curb", "dangerous intersection", "crosswalk light is broken",
    ],
    "category.electricity": [
        "power outage", "no electricity", "power cut", "blackout", "no power",
        "power is out", "transformer sparked", "frequent power cuts",
        "exposed electrical wire", "voltage is too low", "flickering lights",
        "fallen power line", "no power in my house", "electrical box is open",
        "dangerous wires hanging", "the power is off", "my lights are out",
        "electricity is down", "power surge", "high voltage", "low voltage",
    ],
    "category.water": [
        "no water", "leak", "leaking pipe", "sewage", "drain", "flooding",
        "broken pipe leaking", "no water supply", "sewage problem", "drainage is blocked",
        "dirty water coming from tap", "manhole is open", "water logging on the street",
        "burst water main", "clogged drain", "tap water is brown", "sewer overflow",
        "low water pressure", "flooding on my road", "no water in my home",
        "water pipe burst", "clogged sewer", "contaminated water", "water is dirty",
        "smelly water",
    ],
    "category.other": [
        "noise", "park", "dogs", "loud noise at night", "stray dogs are a menace",
        "park is not maintained", "public disturbance", "barking dogs all night",
        "illegal construction", "broken bench in the park", "playground equipment is unsafe",
        "just testing", "i have a problem", "loud music", "stray animals",
        "tree has fallen", "broken swing", "graffiti",
    ],
}


class Classification(NamedTuple):
    category: Category
    score: float


def training_corpus() -> Tuple[List[str], List[str]]:
    texts, labels = [], []
    for label, phrases in TRAINING_PHRASES.items():
        texts.extend(phrases)
        labels.extend([label] * len(phrases))
    return texts, labels


class CategoryClassifier:
    """Trained intent matcher mapping free text to a complaint ``Category``."""

    def __init__(self, pipeline: Pipeline, min_confidence: float = 0.35):
        self.pipeline = pipeline
        self.min_confidence = min_confidence

    def classify(self, text: str) -> Classification:
        """Best-effort label for ``text``. Never raises; unknown or unsure input is ``Other``."""
        text = (text or "").strip()
        if not text:
            return Classification(Category.OTHER, 0.0)
        try:
            features = self.pipeline.named_steps["tfidf"].transform([text])
            if features.nnz == 0:
                # no non-stop-word overlap with the training vocabulary
                return Classification(Category.OTHER, 0.0)
            probabilities = self.pipeline.named_steps["nb"].predict_proba(features)[0]
        except Exception:
            log.exception("classification failed, falling back to Other")
            return Classification(Category.OTHER, 0.0)

        best = int(probabilities.argmax())
        score = float(probabilities[best])
        label = self.pipeline.classes_[best]
        if score < self.min_confidence:
            log.info("low confidence %.2f for %r, falling back to Other", score, label)
            return Classification(Category.OTHER, score)
        try:
            category = Category.parse(label)
        except ValueError:
            log.warning("classifier produced unknown label %r", label)
            return Classification(Category.OTHER, score)
        if category is Category.PENDING:
            return Classification(Category.OTHER, score)
        return Classification(category, score)


def build_classifier(min_confidence: float = 0.35) -> CategoryClassifier:
    """Train the phrase model and return a ready-to-use classifier."""
    texts, labels = training_corpus()
    pipeline = Pipeline([
        ("tfidf", TfidfVectorizer(lowercase=True, stop_words="english", ngram_range=(1, 2), sublinear_tf=True)),
        ("nb", MultinomialNB(alpha=0.1)),
    ])
    pipeline.fit(texts, labels)
    log.info("trained category classifier on %d phrases across %d labels", len(texts), len(set(labels)))
    return CategoryClassifier(pipeline, min_confidence=min_confidence)
