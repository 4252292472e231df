"""
Tests for metric aggregation, segmentation and the end-to-end pipeline.
Run with: python -m pytest tests/
"""

import json
import os

import numpy as np
import pandas as pd
import pytest

from lender_clustering.config import PipelineConfig
from lender_clustering.data_structures import ApplicationRecord, Outcome, InstitutionMetrics
from lender_clustering.data_loader import ApplicationLoader
from lender_clustering.aggregation import MetricAggregator
from lender_clustering.sanitizer import RecordSanitizer
from lender_clustering.exceptions import MissingMetricError, DegenerateInputError
from lender_clustering.interpretation import SegmentFilter, summarize_metrics, cluster_profiles
from lender_clustering.pipeline import LenderClusteringPipeline

import main


POPULATION = "Hispanic or Latino"


def institution_rows(name, total, accepted, rate=3.0, amount=200000.0):
    """Application rows in MetricAggregator layout for one institution."""
    return pd.DataFrame({
        'institution_name': [name] * total,
        'accepted': [True] * accepted + [False] * (total - accepted),
        'interest_rate': [rate] * accepted + [np.nan] * (total - accepted),
        'loan_amount': [amount] * total,
    })


def create_scenario():
    """Five institutions from the reference scenario plus one with no acceptances."""
    totals = [10000, 500, 300, 200, 150]
    accepted = [1000, 400, 280, 190, 120]
    frames = [
        institution_rows(f"Bank {c}", t, a, rate=3.0 + i, amount=100000.0 * (i + 1))
        for i, (c, t, a) in enumerate(zip("ABCDE", totals, accepted))
    ]
    frames.append(institution_rows("Bank F", 40, 0))
    return pd.concat(frames, ignore_index=True)


def create_records(n_institutions=12):
    """
    Two behavioral groups of institutions: low acceptance / high rate and
    high acceptance / low rate, plus applications outside the population.
    """
    records = []
    for i in range(n_institutions):
        group = i % 2
        total = 20 + 2 * i
        accepted = int(round(total * (0.3 if group == 0 else 0.8)))
        rate = (6.0 if group == 0 else 3.0) + 0.05 * i
        amount = (90000.0 if group == 0 else 250000.0) + 1000.0 * i
        for j in range(total):
            ok = j < accepted
            records.append(ApplicationRecord(
                institution_id=f"LEI{i:03d}",
                institution_name=f"Bank {i:02d}",
                ethnicity=POPULATION,
                outcome=Outcome.ACCEPTED if ok else Outcome.OTHER,
                loan_amount=amount,
                interest_rate=rate if ok else None,
            ))
        # same institution, other population: must be ignored
        records.append(ApplicationRecord(
            institution_id=f"LEI{i:03d}",
            institution_name=f"Bank {i:02d}",
            ethnicity="Not Hispanic or Latino",
            outcome=Outcome.ACCEPTED,
            loan_amount=1e7,
            interest_rate=20.0,
        ))

    # no accepted applications at all
    for _ in range(30):
        records.append(ApplicationRecord(
            institution_id="LEI999",
            institution_name="Bank Never",
            ethnicity=POPULATION,
            outcome=Outcome.OTHER,
            loan_amount=150000.0,
        ))
    return records


def small_config(**overrides):
    values = dict(top_n=8, min_applications=20, min_k=2, max_k=4, random_state=1234)
    values.update(overrides)
    return PipelineConfig(**values)


def test_outcome_mapping():
    assert Outcome.from_action_taken(1) is Outcome.ACCEPTED
    assert Outcome.from_action_taken("1") is Outcome.ACCEPTED
    assert Outcome.from_action_taken(3) is Outcome.OTHER
    assert Outcome.from_action_taken(None) is Outcome.OTHER


def test_data_loader():
    df = pd.DataFrame({
        'lei': ['L1', 'L1', 'L2'],
        'respondent_name': ['Bank A', 'Bank A', 'Bank B'],
        'derived_ethnicity': [POPULATION, 'Not Hispanic or Latino', POPULATION],
        'action_taken': [1, 3, 1],
        'interest_rate': ['3.25', 'Exempt', None],
        'loan_amount': [205000, 105000, 305000],
    })
    records = ApplicationLoader.from_dataframe(df)

    assert len(records) == 3
    assert records[0].accepted
    assert records[0].interest_rate == pytest.approx(3.25)
    assert records[1].interest_rate is None
    assert records[2].interest_rate is None

    latino = ApplicationLoader.filter_population(records, POPULATION)
    assert [r.institution_name for r in latino] == ['Bank A', 'Bank B']


def test_aggregator_scenario():
    aggregator = MetricAggregator(create_scenario())
    metrics = aggregator.aggregate()

    assert list(metrics.index) == ['Bank A', 'Bank B', 'Bank C', 'Bank D', 'Bank E']
    np.testing.assert_allclose(
        metrics['pct_accepted'].to_numpy(),
        [10.0, 80.0, 93.333333, 95.0, 80.0],
        rtol=1e-6,
    )
    assert 'Bank F' not in metrics.index
    assert aggregator.excluded == ['Bank F']
    assert aggregator.n_excluded == 1


def test_aggregator_percentage_is_exact():
    metrics = MetricAggregator(create_scenario()).aggregate()

    expected = metrics['accepted_count'] * 100 / metrics['total_count']
    assert (metrics['pct_accepted'] == expected).all()
    assert metrics['pct_accepted'].between(0, 100).all()


def test_aggregator_means_use_accepted_only():
    df = pd.DataFrame({
        'institution_name': ['Bank A'] * 4,
        'accepted': [True, True, False, False],
        'interest_rate': [3.0, 5.0, 10.0, np.nan],
        'loan_amount': [100.0, 300.0, 1000.0, 5000.0],
    })
    aggregator = MetricAggregator(df)
    metrics = aggregator.aggregate()

    assert metrics.loc['Bank A', 'mean_interest_rate'] == pytest.approx(4.0)
    assert metrics.loc['Bank A', 'mean_loan_amount'] == pytest.approx(200.0)
    assert aggregator.mean_interest_rate('Bank A') == pytest.approx(4.0)
    assert aggregator.mean_loan_amount('Bank A') == pytest.approx(200.0)
    assert aggregator.total_count('Bank A') == 4
    assert aggregator.accepted_count('Bank A') == 2
    assert aggregator.acceptance_pct('Bank A') == pytest.approx(50.0)

    row = aggregator.get_institution('Bank A')
    assert isinstance(row, InstitutionMetrics)
    assert row.as_vector() == [50.0, 4.0, 200.0]


def test_aggregator_missing_metrics():
    aggregator = MetricAggregator(create_scenario())
    aggregator.aggregate()

    with pytest.raises(MissingMetricError):
        aggregator.mean_interest_rate('Bank F')
    with pytest.raises(MissingMetricError):
        aggregator.acceptance_pct('Unknown Bank')
    with pytest.raises(MissingMetricError):
        aggregator.get_institution('Bank F')
    assert aggregator.acceptance_pct('Bank F') == 0.0


def test_aggregator_empty_input():
    metrics = MetricAggregator([]).aggregate()
    assert metrics.empty


def test_sanitizer_counts_removed():
    metrics = pd.DataFrame({
        'total_count': [10, 10, 10],
        'accepted_count': [5, 5, 5],
        'pct_accepted': [50.0, 50.0, 50.0],
        'mean_interest_rate': [3.0, np.nan, 4.0],
        'mean_loan_amount': [1e5, 2e5, np.nan],
    }, index=['A', 'B', 'C'])
    sanitizer = RecordSanitizer()

    clean = sanitizer.sanitize(metrics)

    assert list(clean.index) == ['A']
    assert sanitizer.n_removed == 2
    assert sanitizer.removed == ['B', 'C']


def test_segment_filter():
    metrics = pd.DataFrame({
        'total_count': [100, 100, 100, 100],
        'accepted_count': [50, 60, 70, 80],
        'pct_accepted': [50.0, 60.0, 70.0, 80.0],
        'mean_interest_rate': [3.0, 4.0, 3.5, 2.0],
        'mean_loan_amount': [1e5, 2e5, 3e5, 4e5],
    }, index=['A', 'B', 'C', 'D'])
    assignment = pd.Series([1, 1, 2, 2], index=['A', 'B', 'C', 'D'], name='cluster')

    segments = SegmentFilter(assignment, metrics, interest_rate_threshold=3.5).segments()

    assert set(segments) == {
        'cluster_1', 'cluster_1_low_rate', 'cluster_1_high_rate',
        'cluster_2', 'cluster_2_low_rate', 'cluster_2_high_rate',
    }
    assert list(segments['cluster_1_low_rate'].index) == ['A']
    assert list(segments['cluster_1_high_rate'].index) == ['B']
    assert list(segments['cluster_2_low_rate'].index) == ['C', 'D']
    assert segments['cluster_2_high_rate'].empty
    assert segments['cluster_1'].loc['B', 'rate_band'] == '> 3.5'
    assert segments['cluster_2'].loc['C', 'rate_band'] == '<= 3.5'


def test_segment_filter_errors():
    metrics = pd.DataFrame({'mean_interest_rate': [3.0]}, index=['A'])
    with pytest.raises(ValueError):
        SegmentFilter(pd.Series([1], index=['B']), metrics, 3.5)

    segment_filter = SegmentFilter(pd.Series([1], index=['A']), metrics, 3.5)
    with pytest.raises(ValueError):
        segment_filter.cluster(2)


def test_summaries():
    metrics = pd.DataFrame({
        'pct_accepted': [10.0, 20.0, 30.0, 40.0],
        'mean_interest_rate': [3.0, 4.0, 5.0, 6.0],
        'mean_loan_amount': [1.0, 2.0, 3.0, 4.0],
    }, index=['A', 'B', 'C', 'D'])

    summary = summarize_metrics(metrics)
    assert summary.loc['pct_accepted', 'median'] == pytest.approx(25.0)
    assert summary.loc['mean_interest_rate', 'max'] == pytest.approx(6.0)

    profiles = cluster_profiles(metrics, pd.Series([1, 1, 2, 2], index=['A', 'B', 'C', 'D']))
    assert profiles['n_institutions'].tolist() == [2, 2]
    assert profiles.loc[2, 'pct_accepted_mean'] == pytest.approx(35.0)


def test_config():
    config = PipelineConfig.from_dict({'top_n': 50, 'unknown': 1})
    assert config.top_n == 50
    assert config.min_applications == 1000

    with pytest.raises(ValueError):
        PipelineConfig(min_k=5, max_k=3)
    with pytest.raises(ValueError):
        PipelineConfig(min_k=1)


def test_config_from_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({'interest_rate_threshold': 4.0, 'random_state': 7}))

    config = PipelineConfig.from_json(str(path))
    assert config.interest_rate_threshold == 4.0
    assert config.random_state == 7


def test_pipeline():
    """Test complete pipeline."""
    pipeline = LenderClusteringPipeline(small_config())
    pipeline.fit(create_records())

    metrics = pipeline.get_metrics()
    assert len(metrics) == 12
    assert 'Bank Never' not in metrics.index
    # other-population applications are not counted
    assert metrics['mean_interest_rate'].max() < 20.0

    tree = pipeline.get_merge_tree()
    assert len(tree) == 7
    assert tree.labels == list(metrics.index[:8])

    k = pipeline.selection.k
    assert 2 <= k <= 4
    labels = pipeline.get_cluster_labels()
    assert len(labels) == len(pipeline.partition_subset)
    assert set(labels.tolist()) <= set(range(1, k + 1))

    assignments = pipeline.get_assignments()
    assert assignments['is_medoid'].sum() == k

    summary = pipeline.get_cluster_summary()
    assert len(summary) == k
    assert summary['size'].sum() == len(pipeline.partition_subset)

    segments = pipeline.get_segments()
    assert len(segments) == 3 * k

    assert len(pipeline.get_metric_summary('top')) == 3


def test_pipeline_subsets_use_separate_scaling():
    pipeline = LenderClusteringPipeline(small_config(top_n=6, min_applications=24))
    pipeline.fit(create_records())

    assert pipeline.top_standardizer is not pipeline.partition_standardizer
    assert len(pipeline.top_subset) == 6
    assert (pipeline.partition_subset['total_count'] >= 24).all()
    assert not np.allclose(
        pipeline.top_standardizer.mean_.to_numpy(),
        pipeline.partition_standardizer.mean_.to_numpy(),
    )


def test_pipeline_is_deterministic():
    first = LenderClusteringPipeline(small_config()).fit(create_records())
    second = LenderClusteringPipeline(small_config()).fit(create_records())

    pd.testing.assert_series_equal(first.partition.assignment, second.partition.assignment)
    np.testing.assert_array_equal(
        first.get_merge_tree().to_linkage_matrix(),
        second.get_merge_tree().to_linkage_matrix(),
    )


def test_pipeline_degenerate_input():
    records = []
    for i in range(3):
        for j in range(10):
            records.append(ApplicationRecord(
                institution_id=f"L{i}",
                institution_name=f"Bank {i}",
                ethnicity=POPULATION,
                outcome=Outcome.ACCEPTED if j < 5 else Outcome.OTHER,
                loan_amount=100000.0,
                interest_rate=3.0 if j < 5 else None,
            ))

    pipeline = LenderClusteringPipeline(small_config(min_applications=1))
    with pytest.raises(DegenerateInputError):
        pipeline.fit(records)


def test_pipeline_refit_clears_previous_results():
    pipeline = LenderClusteringPipeline(small_config())
    pipeline.fit(create_records())
    assert len(pipeline.get_assignments()) > 0

    # two institutions with identical metrics: zero spread in every column
    records = []
    for name in ("Bank X", "Bank Y"):
        for j in range(2000):
            ok = j < 1000
            records.append(ApplicationRecord(
                institution_id=name,
                institution_name=name,
                ethnicity=POPULATION,
                outcome=Outcome.ACCEPTED if ok else Outcome.OTHER,
                loan_amount=200000.0,
                interest_rate=4.0 if ok else None,
            ))

    with pytest.raises(DegenerateInputError):
        pipeline.fit(records)

    assert list(pipeline.get_metrics().index) == ["Bank X", "Bank Y"]
    assert pipeline.top_subset is None
    assert pipeline.partition_subset is None
    with pytest.raises(ValueError):
        pipeline.get_merge_tree()
    with pytest.raises(ValueError):
        pipeline.get_assignments()
    with pytest.raises(ValueError):
        pipeline.get_segments()


def test_pipeline_dataframe_without_ethnicity():
    frame = create_scenario()

    with pytest.raises(ValueError, match="ethnicity"):
        LenderClusteringPipeline(small_config()).build_metrics(frame)

    metrics = LenderClusteringPipeline(small_config(ethnicity="")).build_metrics(frame)
    assert len(metrics) == 5


def test_pipeline_not_fitted():
    pipeline = LenderClusteringPipeline()
    with pytest.raises(ValueError):
        pipeline.get_metrics()
    with pytest.raises(ValueError):
        pipeline.get_assignments()
    with pytest.raises(ValueError):
        pipeline.get_segments()


def test_main_writes_outputs(tmp_path):
    rows = []
    for r in create_records():
        rows.append({
            'lei': r.institution_id,
            'respondent_name': r.institution_name,
            'derived_ethnicity': r.ethnicity,
            'action_taken': 1 if r.accepted else 3,
            'interest_rate': r.interest_rate if r.interest_rate is not None else 'NA',
            'loan_amount': r.loan_amount,
        })
    input_path = tmp_path / "lar.csv"
    pd.DataFrame(rows).to_csv(input_path, index=False)
    out_dir = tmp_path / "results"

    main.main([
        '--input', str(input_path),
        '--output-dir', str(out_dir),
        '--top-n', '8',
        '--min-applications', '20',
        '--max-k', '4',
    ])

    for name in ['institution_metrics.csv', 'merge_tree.csv', 'k_selection.csv',
                 'assignments.csv', 'cluster_info.csv', 'run.json']:
        assert os.path.exists(out_dir / name)

    with open(out_dir / "run.json", encoding="utf-8") as f:
        run = json.load(f)
    assert run['config']['top_n'] == 8
    assert 2 <= run['chosen_k'] <= 4
    assert len(os.listdir(out_dir / "segments")) == 3 * run['chosen_k']
