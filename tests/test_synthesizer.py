"""Tests for clustering, confidence scoring and the topic lexicon."""

import pytest

from knowflow.models.material import DirectionContext, Fragment, Material
from knowflow.synthesis.calibration import (
    calibrate_length_score,
    calibrate_overlap_score,
    calibrate_support_score,
)
from knowflow.synthesis.ingester import MaterialIngester
from knowflow.synthesis.lexicon import Topic, TopicLexicon, load_lexicon
from knowflow.synthesis.metrics import cjk_bigrams, extract_terms, latin_terms, term_frequencies
from knowflow.synthesis.rule_based import ClusterFeatures, RuleBasedScorer
from knowflow.synthesis.synthesizer import CardSynthesizer

RETRIEVAL_NOTE = "离线评估覆盖率下滑 12%，上线后 query 长尾错配，需要监测 embedding 漂移。"


def _fragments(*texts: str) -> list[Fragment]:
    return [
        Fragment(index=i, start=0, end=len(text), text=text, salience=0.5)
        for i, text in enumerate(texts)
    ]


@pytest.fixture
def zh_context():
    return DirectionContext(
        direction_id="dir-1",
        name="Agentic Retrieval Diagnostics",
        language="zh",
    )


class TestRetrievalNote:
    def test_yields_several_drafts(self, zh_context):
        fragments = MaterialIngester().ingest(Material(body=RETRIEVAL_NOTE))
        clusters = CardSynthesizer().synthesize(fragments, zh_context)
        assert len(clusters) >= 2

    def test_embedding_drift_cluster(self, zh_context):
        fragments = MaterialIngester().ingest(Material(body=RETRIEVAL_NOTE))
        clusters = CardSynthesizer().synthesize(fragments, zh_context)
        drift = [c for c in clusters if "Embedding 漂移排查" in c.title]
        assert len(drift) == 1
        assert "retrieval" in drift[0].tags
        assert "drift" in drift[0].tags
        assert drift[0].topic_key == "embedding-drift"

    def test_cluster_ids_in_formation_order(self, zh_context):
        fragments = MaterialIngester().ingest(Material(body=RETRIEVAL_NOTE))
        clusters = CardSynthesizer().synthesize(fragments, zh_context)
        assert [c.id for c in clusters] == [f"c{i + 1}" for i in range(len(clusters))]

    def test_identical_input_identical_output(self, zh_context):
        fragments = MaterialIngester().ingest(Material(body=RETRIEVAL_NOTE))
        synthesizer = CardSynthesizer()
        first = synthesizer.synthesize(fragments, zh_context)
        second = synthesizer.synthesize(fragments, zh_context)
        assert [c.model_dump() for c in first] == [c.model_dump() for c in second]


class TestClustering:
    def test_empty_fragments(self, zh_context):
        assert CardSynthesizer().synthesize([], zh_context) == []

    def test_similar_fragments_join(self):
        fragments = _fragments(
            "Cosine similarity of embeddings drops after reindex.",
            "Embeddings drift as cosine similarity drops.",
        )
        clusters = CardSynthesizer().synthesize(fragments, DirectionContext(name="Search"))
        assert len(clusters) == 1
        assert clusters[0].fragment_indices == [0, 1]
        assert clusters[0].title == "Embedding drift triage"

    def test_unrelated_fragments_split(self):
        fragments = _fragments(
            "Rollback the deploy when errors spike.",
            "Waker polling keeps the executor busy.",
        )
        clusters = CardSynthesizer().synthesize(fragments, DirectionContext(name="Ops"))
        assert len(clusters) == 2
        assert clusters[0].topic_key == "rollback"
        assert clusters[1].topic_key == "async-runtime"

    def test_duplicate_fragment_never_lowers_confidence(self):
        text = "Cosine similarity of embeddings drops after reindex."
        context = DirectionContext(name="Search", vocabulary=["embedding"])
        synthesizer = CardSynthesizer()
        single = synthesizer.synthesize(_fragments(text), context)
        doubled = synthesizer.synthesize(_fragments(text, text), context)
        assert len(doubled) == 1
        assert doubled[0].confidence >= single[0].confidence

    def test_duplicate_text_appears_once_in_body(self):
        text = "Cosine similarity of embeddings drops after reindex."
        clusters = CardSynthesizer().synthesize(_fragments(text, text), DirectionContext())
        assert clusters[0].body == text


class TestTitlesAndTags:
    def test_title_without_topic_uses_first_sentence(self):
        synthesizer = CardSynthesizer(lexicon=TopicLexicon())
        clusters = synthesizer.synthesize(
            _fragments("Pool exhaustion under load. More details follow here."),
            DirectionContext(),
        )
        assert clusters[0].title == "Pool exhaustion under load"

    def test_long_title_is_truncated(self):
        synthesizer = CardSynthesizer(lexicon=TopicLexicon())
        clusters = synthesizer.synthesize(_fragments("word " * 40), DirectionContext())
        assert len(clusters[0].title) <= 81
        assert clusters[0].title.endswith("…")

    def test_fresh_terms_limited(self):
        synthesizer = CardSynthesizer(lexicon=TopicLexicon(), max_new_tags=2)
        clusters = synthesizer.synthesize(
            _fragments("Alpha beta gamma delta epsilon."), DirectionContext()
        )
        assert clusters[0].tags == ["alpha", "beta"]

    def test_declared_and_vocabulary_tags(self):
        context = DirectionContext(name="Search", vocabulary=["reindex"])
        clusters = CardSynthesizer().synthesize(
            _fragments("Cosine similarity of embeddings drops after reindex."),
            context,
            declared_tags=["Ops"],
        )
        tags = clusters[0].tags
        assert "ops" in tags
        assert "reindex" in tags
        assert tags == sorted(tags)

    def test_custom_scorer(self):
        class FixedScorer:
            def score(self, features: ClusterFeatures) -> float:
                return 0.42

        clusters = CardSynthesizer(scorer=FixedScorer()).synthesize(
            _fragments("Rollback the deploy when errors spike."), DirectionContext()
        )
        assert clusters[0].confidence == 0.42


class TestScoring:
    def test_support(self):
        assert calibrate_support_score(0) == 0.0
        assert calibrate_support_score(1) == pytest.approx(0.5)
        assert calibrate_support_score(2) == pytest.approx(0.75)

    def test_overlap(self):
        assert calibrate_overlap_score(["a", "b"], ["A"]) == pytest.approx(0.5)
        assert calibrate_overlap_score([], ["a"]) == 0.0
        assert calibrate_overlap_score(["a"], []) == 0.0

    def test_length(self):
        assert calibrate_length_score(0, 40, 600) == 0.0
        assert calibrate_length_score(20, 40, 600) == pytest.approx(0.5)
        assert calibrate_length_score(100, 40, 600) == 1.0
        assert calibrate_length_score(900, 40, 600) == pytest.approx(0.5)
        assert calibrate_length_score(1200, 40, 600) == 0.0

    def test_rule_based_in_range(self):
        scorer = RuleBasedScorer()
        full = scorer.score(
            ClusterFeatures(fragment_count=10, tags=["a"], vocabulary=["a"], body_length=200)
        )
        empty = scorer.score(ClusterFeatures(fragment_count=0))
        assert 0.9 < full <= 1.0
        assert empty == 0.0


class TestLexicon:
    def test_bundled_lexicon_loads(self):
        lexicon = load_lexicon()
        assert len(lexicon) >= 3
        assert lexicon.match("embedding 漂移").key == "embedding-drift"

    def test_no_match(self):
        assert load_lexicon().match("nothing relevant here") is None

    def test_title_language_fallback(self):
        topic = Topic(key="t", title="Default", titles={"zh": "中文"})
        assert topic.title_for("zh-CN") == "中文"
        assert topic.title_for("fr") == "Default"
        assert topic.title_for(None) == "Default"

    def test_first_topic_wins_ties(self):
        lexicon = TopicLexicon([
            Topic(key="first", title="First", keywords=["shared"]),
            Topic(key="second", title="Second", keywords=["shared"]),
        ])
        assert lexicon.match("a shared keyword").key == "first"

    def test_custom_lexicon_file(self, tmp_path):
        path = tmp_path / "lexicon.yaml"
        path.write_text(
            "topics:\n  - key: caching\n    title: Caching\n    keywords: [cache]\n",
            encoding="utf-8",
        )
        lexicon = load_lexicon(path)
        assert lexicon.match("Cache stampede").key == "caching"


class TestTerms:
    def test_latin_terms_drop_stopwords(self):
        assert latin_terms("The Recall of the top-k index") == ["recall", "top-k", "index"]

    def test_cjk_bigrams(self):
        assert cjk_bigrams("漂移 向量化") == ["漂移", "向量", "量化"]
        assert cjk_bigrams("长") == ["长"]

    def test_extract_terms_mixes_scripts(self):
        assert extract_terms("监测 embedding 漂移") == ["embedding", "监测", "漂移"]

    def test_term_frequencies(self):
        counts = term_frequencies(["drift drift recall", "drift"])
        assert counts["drift"] == 3
        assert list(counts) == ["drift", "recall"]
