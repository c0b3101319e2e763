import pytest

from influencer_search.models import Category, DataSource, FeedbackRecord, RiskLevel, ScrapedProfile
from influencer_search.quality import DEFAULT_WEIGHTS, FeatureWeight, QualityScorer, extract_features


def profile(**fields) -> ScrapedProfile:
    defaults = {"platform": "instagram", "url": "", "data_source": DataSource.SCRAPED}
    defaults.update(fields)
    return ScrapedProfile(**defaults)


@pytest.fixture
def brand_account():
    return profile(
        username="nike_official_store",
        display_name="Nike Store",
        biography="Premium quality products. Shop now, new collection available",
        website="https://nike.example",
        profile_picture_url="https://cdn.example/nike.jpg",
        followers=500_000,
        following=10,
        posts=900,
    )


@pytest.fixture
def creator_account():
    return profile(
        username="maria_lifestyle",
        display_name="Maria",
        biography="Mom of two, sharing my family life and happy moments",
        profile_picture_url="https://cdn.example/maria.jpg",
        followers=50_000,
        following=800,
        posts=300,
        engagement_rate=0.045,
    )


@pytest.fixture
def placeholder_account():
    return profile(username="12345678", followers=10)


def test_feature_extraction(brand_account):
    features = extract_features(brand_account)
    assert features.has_brand_keywords
    assert features.business_language
    assert features.promotional_content
    assert features.has_website
    assert features.follower_to_following_ratio == 50_000


def test_classifies_the_three_categories(brand_account, creator_account, placeholder_account):
    scorer = QualityScorer()
    assert scorer.decide(brand_account).category is Category.BRAND
    assert scorer.decide(creator_account).category is Category.INFLUENCER
    assert scorer.decide(placeholder_account).category is Category.GENERIC


def test_scores_are_percentages(creator_account):
    decision = QualityScorer().decide(creator_account)
    assert sum(decision.scores.values()) == pytest.approx(100.0)
    assert 0 <= decision.confidence <= 100
    assert decision.reason.startswith("Classified as influencer")


def test_filter_includes_influencers_and_drops_confident_non_influencers(creator_account, placeholder_account):
    scorer = QualityScorer()
    kept = scorer.filter_profile(creator_account)
    dropped = scorer.filter_profile(placeholder_account)

    assert kept.include is True
    assert dropped.include is False
    assert dropped.decision.risk_level is not RiskLevel.HIGH
    assert "Likely an inactive or placeholder account" in dropped.recommendations


def test_corrective_feedback_shifts_weights(brand_account):
    scorer = QualityScorer()
    decision = scorer.decide(brand_account)
    assert decision.category is Category.BRAND

    scorer.feedback(FeedbackRecord(brand_account, decision, Category.INFLUENCER))

    assert scorer.weights[FeatureWeight.BRAND_KEYWORDS] < DEFAULT_WEIGHTS[FeatureWeight.BRAND_KEYWORDS]
    assert scorer.weights[FeatureWeight.BUSINESS_LANGUAGE] < DEFAULT_WEIGHTS[FeatureWeight.BUSINESS_LANGUAGE]
    assert scorer.weights[FeatureWeight.FOLLOWER_RATIO] > DEFAULT_WEIGHTS[FeatureWeight.FOLLOWER_RATIO]
    # Features absent from the profile are left alone
    assert scorer.weights[FeatureWeight.VERIFIED] == DEFAULT_WEIGHTS[FeatureWeight.VERIFIED]


def test_agreeing_feedback_leaves_weights_untouched(creator_account):
    scorer = QualityScorer()
    decision = scorer.decide(creator_account)
    scorer.feedback(FeedbackRecord(creator_account, decision, Category.INFLUENCER))
    assert scorer.weights == DEFAULT_WEIGHTS
    assert scorer.accuracy == 1.0


def test_weights_never_drop_below_floor(brand_account):
    scorer = QualityScorer(learning_rate=10.0, weight_floor=5.0)
    decision = scorer.decide(brand_account)
    for _ in range(5):
        scorer.feedback(FeedbackRecord(brand_account, decision, Category.INFLUENCER))
    assert scorer.weights[FeatureWeight.BRAND_KEYWORDS] == 5.0
    assert min(scorer.weights.values()) >= 5.0


def test_reinforces_whole_category_when_none_of_its_features_fired(placeholder_account):
    scorer = QualityScorer()
    decision = scorer.decide(placeholder_account)
    scorer.feedback(FeedbackRecord(placeholder_account, decision, Category.BRAND))
    for weight in (FeatureWeight.BRAND_KEYWORDS, FeatureWeight.HAS_WEBSITE, FeatureWeight.HIGH_POST_COUNT):
        assert scorer.weights[weight] > DEFAULT_WEIGHTS[weight]


def test_accuracy_over_rolling_window(creator_account, brand_account):
    scorer = QualityScorer(accuracy_window=2)
    assert scorer.accuracy is None

    brand_decision = scorer.decide(brand_account)
    creator_decision = scorer.decide(creator_account)
    scorer.feedback(FeedbackRecord(brand_account, brand_decision, Category.INFLUENCER))
    scorer.feedback(FeedbackRecord(creator_account, creator_decision, Category.INFLUENCER))
    assert scorer.accuracy == 0.5

    scorer.feedback(FeedbackRecord(creator_account, creator_decision, Category.INFLUENCER))
    assert scorer.accuracy == 1.0
    assert scorer.metrics()["feedback_count"] == 3
