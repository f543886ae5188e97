"""Card synthesis: cluster fragments and emit scored draft clusters."""

import re

import numpy as np
import structlog

from knowflow.config import Settings
from knowflow.models.material import DirectionContext, DraftCluster, Fragment
from knowflow.synthesis.lexicon import Topic, TopicLexicon, load_lexicon
from knowflow.synthesis.metrics import extract_terms, term_frequencies
from knowflow.synthesis.rule_based import ClusterFeatures, ConfidenceScorer, RuleBasedScorer

logger = structlog.get_logger()

MAX_TITLE_CHARS = 80
_FIRST_SENTENCE_RE = re.compile(r"^.+?(?:[.!?;](?=\s|$)|[。！？；，]|$)", re.DOTALL)
_TRAILING_PUNCT = " \t\r\n.,;:!?。，；：！？、…-"


def _cosine(centroids: np.ndarray, vector: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(centroids, axis=1) * np.linalg.norm(vector)
    dots = centroids @ vector
    return np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)


def _clean_title(text: str) -> str:
    title = " ".join(text.split()).strip(_TRAILING_PUNCT)
    if len(title) > MAX_TITLE_CHARS:
        title = title[:MAX_TITLE_CHARS].rstrip() + "…"
    return title


def _first_sentence(text: str) -> str:
    match = _FIRST_SENTENCE_RE.match(text.strip())
    return match.group() if match else text


class _Cluster:
    def __init__(self, fragment: Fragment, vector: np.ndarray, topic: Topic | None):
        self.members = [fragment]
        self.centroid = vector.copy()
        self.topic = topic

    def add(self, fragment: Fragment, vector: np.ndarray, topic: Topic | None) -> None:
        self.members.append(fragment)
        # Element-wise max keeps the centroid a set-like union of features
        np.maximum(self.centroid, vector, out=self.centroid)
        if self.topic is None:
            self.topic = topic


class CardSynthesizer:
    """Groups fragments into clusters and scores them as draft cards.

    Clustering is greedy and order-preserving: each fragment joins the most
    similar existing cluster (earliest on ties) when the cosine similarity
    reaches ``cluster_similarity``, otherwise it starts a new cluster.
    Identical input always yields identical clusters.

    Args:
        lexicon: Topic rules naming and tagging clusters.
        scorer: Confidence scorer; rule-based by default.
        cluster_similarity: Minimum similarity to join a cluster.
        max_new_tags: Newly observed terms added to each cluster's tags.
        topic_weight: Feature weight of a lexicon topic match.
    """

    def __init__(
        self,
        lexicon: TopicLexicon | None = None,
        scorer: ConfidenceScorer | None = None,
        cluster_similarity: float = 0.35,
        max_new_tags: int = 3,
        topic_weight: float = 3.0,
    ):
        self.lexicon = lexicon if lexicon is not None else load_lexicon()
        self.scorer = scorer or RuleBasedScorer()
        self.cluster_similarity = cluster_similarity
        self.max_new_tags = max_new_tags
        self.topic_weight = topic_weight

    @classmethod
    def from_settings(cls, settings: Settings) -> "CardSynthesizer":
        return cls(
            lexicon=load_lexicon(settings.lexicon_path),
            scorer=RuleBasedScorer(
                target_min_chars=settings.target_body_min_chars,
                target_max_chars=settings.target_body_max_chars,
            ),
            cluster_similarity=settings.cluster_similarity,
            max_new_tags=settings.max_new_tags,
        )

    def synthesize(
        self,
        fragments: list[Fragment],
        context: DirectionContext,
        declared_tags: list[str] | None = None,
    ) -> list[DraftCluster]:
        """Cluster fragments of one material into scored drafts.

        Args:
            fragments: Output of ``MaterialIngester.ingest``.
            context: Target direction (vocabulary and language).
            declared_tags: Tags the user attached to the material.

        Returns:
            Clusters in formation order; empty for empty input.
        """
        if not fragments:
            return []

        topics = [self.lexicon.match(f.text) for f in fragments]
        vectors = self._vectorize(fragments, topics)

        clusters: list[_Cluster] = []
        for fragment, vector, topic in zip(fragments, vectors, topics):
            if clusters:
                centroids = np.vstack([c.centroid for c in clusters])
                similarities = _cosine(centroids, vector)
                best = int(np.argmax(similarities))  # first maximum = earliest cluster
                if similarities[best] >= self.cluster_similarity:
                    clusters[best].add(fragment, vector, topic)
                    continue
            clusters.append(_Cluster(fragment, vector, topic))

        drafts = [
            self._build(f"c{i + 1}", cluster, context, declared_tags or [])
            for i, cluster in enumerate(clusters)
        ]
        logger.info(
            "clusters_synthesized",
            fragments=len(fragments),
            clusters=len(drafts),
            direction=context.name,
        )
        return drafts

    def _vectorize(self, fragments: list[Fragment], topics: list[Topic | None]) -> np.ndarray:
        features: list[set[str]] = []
        index: dict[str, int] = {}
        for fragment, topic in zip(fragments, topics):
            keys = set(extract_terms(fragment.text))
            if topic is not None:
                keys.add(f"topic:{topic.key}")
            features.append(keys)
            for key in sorted(keys):
                index.setdefault(key, len(index))

        vectors = np.zeros((len(fragments), max(len(index), 1)))
        for row, keys in enumerate(features):
            for key in keys:
                vectors[row, index[key]] = self.topic_weight if key.startswith("topic:") else 1.0
        return vectors

    def _build(
        self,
        cluster_id: str,
        cluster: _Cluster,
        context: DirectionContext,
        declared_tags: list[str],
    ) -> DraftCluster:
        body = self._body(cluster.members)
        tags = self._tags(cluster, body, context, declared_tags)
        confidence = self.scorer.score(
            ClusterFeatures(
                fragment_count=len(cluster.members),
                tags=tags,
                vocabulary=context.vocabulary,
                body_length=len(body),
            )
        )
        return DraftCluster(
            id=cluster_id,
            title=self._title(cluster, context),
            tags=tags,
            body=body,
            confidence=confidence,
            fragment_indices=[f.index for f in cluster.members],
            topic_key=cluster.topic.key if cluster.topic else None,
        )

    @staticmethod
    def _body(members: list[Fragment]) -> str:
        seen: set[str] = set()
        parts = []
        for fragment in members:
            text = fragment.text.strip()
            if text and text not in seen:
                seen.add(text)
                parts.append(text)
        return "\n".join(parts)

    @staticmethod
    def _title(cluster: _Cluster, context: DirectionContext) -> str:
        if cluster.topic is not None:
            return cluster.topic.title_for(context.language)

        salient = sorted(cluster.members, key=lambda f: (-f.salience, f.index))[0]
        candidate = _first_sentence(salient.text)
        shortest = min(cluster.members, key=lambda f: (len(f.text.strip()), f.index))
        if len(shortest.text.strip()) < len(candidate.strip()):
            candidate = shortest.text
        return _clean_title(candidate) or context.name or "Imported snippet"

    def _tags(
        self,
        cluster: _Cluster,
        body: str,
        context: DirectionContext,
        declared_tags: list[str],
    ) -> list[str]:
        tags = {t.strip().lower() for t in declared_tags if t.strip()}
        if cluster.topic is not None:
            tags.update(t.lower() for t in cluster.topic.tags)

        lowered = body.lower()
        vocabulary = {v.strip().lower() for v in context.vocabulary if v.strip()}
        tags.update(v for v in vocabulary if v in lowered)

        counts = term_frequencies([f.text for f in cluster.members])
        fresh = [term for term in counts if term not in tags and term not in vocabulary]
        # Counter preserves insertion order, so equal counts keep first-seen order
        fresh.sort(key=lambda term: -counts[term])
        tags.update(fresh[: self.max_new_tags])
        return sorted(tags)
