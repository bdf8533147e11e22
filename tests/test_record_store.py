import pytest

from collection_engine import (
    CollectionKPICalculator, Config, EmptyDatasetError, RecordFilter, RecordStore,
    generate_synthetic_records, next_period, order_periods, parse_period, records_to_frame,
)
from conftest import CURRENT, make_record


class TestRecordStore:

    def test_empty_store_is_rejected(self):
        with pytest.raises(EmptyDatasetError):
            RecordStore([])

    def test_records_keep_input_order(self, small_records, small_store):
        assert small_store.records == tuple(small_records)
        assert len(small_store) == len(small_records)
        assert list(small_store) == small_records

    def test_current_period_defaults_to_config(self, small_records):
        assert RecordStore(small_records).current_period == Config.CURRENT_PERIOD

    def test_frame_is_a_copy(self, small_store):
        frame = small_store.to_frame()
        frame.loc[0, 'due_amount'] = -1
        assert small_store.to_frame().loc[0, 'due_amount'] == 100.0

    def test_converted_frame_cannot_change_store(self, small_store):
        calculator = CollectionKPICalculator(small_store)
        before = calculator.get_overall_collection_rate()
        frame = records_to_frame(small_store)
        frame.loc[0, 'actual_collection'] = 0.0
        assert calculator.get_overall_collection_rate() == pytest.approx(before)
        assert before == pytest.approx(90.0)

    def test_members_in_first_seen_order(self, small_store):
        assert small_store.members('branch') == ['B1', 'B2', 'B3']
        assert small_store.members('region') == ['North', 'South']
        assert small_store.members('month') == ['May25', 'Jun25', CURRENT]

    def test_periods_are_chronological(self):
        records = [
            make_record('B1', 'P1', 'Jun25'),
            make_record('B1', 'P1', 'Feb25'),
            make_record('B1', 'P1', CURRENT, actual=0),
        ]
        store = RecordStore(records, current_period=CURRENT)
        assert store.periods() == ['Feb25', 'Jun25', CURRENT]
        assert store.historical_periods() == ['Feb25', 'Jun25']

    def test_duplicate_cells_rejected(self):
        records = [make_record('B1', 'P1', 'Jun25'), make_record('B1', 'P1', 'Jun25', due=200)]
        with pytest.raises(ValueError, match='Duplicate'):
            RecordStore(records)

    def test_current_period_actuals_rejected(self):
        with pytest.raises(ValueError, match='cannot have actual collections'):
            RecordStore([make_record('B1', 'P1', CURRENT, actual=10)], current_period=CURRENT)

    def test_non_positive_due_rejected(self):
        with pytest.raises(ValueError, match='due_amount'):
            RecordStore([make_record(due=0)])

    def test_negative_prediction_rejected(self):
        with pytest.raises(ValueError, match='predicted_collection'):
            RecordStore([make_record(predicted=-5)])

    def test_branch_with_two_regions_rejected(self):
        records = [
            make_record('B1', 'P1', 'Jun25', region='North'),
            make_record('B1', 'P2', 'Jun25', region='South'),
        ]
        with pytest.raises(ValueError, match='region'):
            RecordStore(records)

    def test_branch_with_two_channels_rejected(self):
        records = [
            make_record('B1', 'P1', 'Jun25', channel='SBI'),
            make_record('B1', 'P2', 'Jun25', channel='RETAIL'),
        ]
        with pytest.raises(ValueError, match='channel'):
            RecordStore(records)


class TestRecordFilter:

    def test_no_filters(self, small_records):
        record_filter = RecordFilter()
        assert record_filter.is_empty
        assert record_filter.describe() == 'None'
        assert record_filter.apply(small_records) == small_records

    def test_dimension_filters_combine(self, small_records):
        kept = RecordFilter(region='North', product='P1').apply(small_records)
        assert {(r.branch, r.product) for r in kept} == {('B1', 'P1'), ('B2', 'P1')}
        assert all(r.region == 'North' for r in kept)

    def test_period_range_is_inclusive(self, synthetic_store):
        kept = RecordFilter(start_period='Mar25', end_period='May25').apply(synthetic_store.records)
        assert {r.due_month for r in kept} == {'Mar25', 'Apr25', 'May25'}

    def test_open_ended_period_range(self, synthetic_store):
        kept = RecordFilter(start_period='Jun25').apply(synthetic_store.records)
        assert {r.due_month for r in kept} == {'Jun25', 'Jul25'}

    def test_describe_lists_active_filters(self):
        record_filter = RecordFilter(region='Mumbai', channel='SBI', end_period='Jun25')
        assert record_filter.describe() == 'region=Mumbai, channel=SBI, period=start-Jun25'
        assert not record_filter.is_empty

    def test_filtered_store(self, synthetic_store):
        mumbai = synthetic_store.filtered(RecordFilter(region='Mumbai'))
        assert mumbai.members('region') == ['Mumbai']
        assert mumbai.current_period == synthetic_store.current_period
        assert len(mumbai) == 19 * len(Config.MONTHS) * len(Config.PRODUCTS)

    def test_filter_matching_nothing_cannot_build_store(self, synthetic_store):
        with pytest.raises(EmptyDatasetError):
            synthetic_store.filtered(RecordFilter(region='Kolkata'))


class TestPeriodTokens:

    def test_parse(self):
        parsed = parse_period('Jul25')
        assert (parsed.year, parsed.month) == (2025, 7)
        assert parse_period('not-a-month') is None

    def test_next_period_rolls_over_year(self):
        assert next_period('Jul25') == 'Aug25'
        assert next_period('Nov25', 3) == 'Feb26'

    def test_next_period_for_unparsable_token(self):
        assert next_period('P9', 2) == 'P9+2'

    def test_order_periods_falls_back_to_first_seen(self):
        assert order_periods(['Q2', 'Q1', 'Q2']) == ['Q2', 'Q1']


class TestSyntheticGenerator:

    def test_shape(self):
        records = generate_synthetic_records(seed=1)
        assert len(records) == Config.BRANCH_COUNT * len(Config.MONTHS) * len(Config.PRODUCTS)
        assert len({r.branch for r in records}) == Config.BRANCH_COUNT

    def test_same_seed_same_data(self):
        assert generate_synthetic_records(seed=11) == generate_synthetic_records(seed=11)

    def test_different_seed_different_data(self):
        assert generate_synthetic_records(seed=11) != generate_synthetic_records(seed=12)

    def test_injected_generator(self):
        import numpy as np
        first = generate_synthetic_records(rng=np.random.default_rng(5))
        second = generate_synthetic_records(seed=5)
        assert first == second

    def test_every_branch_has_a_region(self):
        records = generate_synthetic_records(seed=1)
        regions = {r.branch: r.region for r in records}
        assert regions['Branch-01'] == 'Chennai'
        assert regions['Branch-20'] == 'Mumbai'
        assert regions['Branch-58'] == 'Delhi'
        assert set(regions.values()) == set(Config.REGIONS)

    def test_channels_alternate(self):
        records = generate_synthetic_records(seed=1)
        channels = {r.branch: r.channel for r in records}
        assert channels['Branch-01'] == 'SBI'
        assert channels['Branch-02'] == 'RETAIL'

    def test_invariants_hold(self):
        records = generate_synthetic_records(seed=3)
        low, high = Config.DUE_AMOUNT_RANGE
        for r in records:
            assert low <= r.due_amount <= high
            assert r.predicted_collection > 0
            if r.due_month == Config.CURRENT_PERIOD:
                assert r.actual_collection == 0
            else:
                assert r.actual_collection > 0
        # RecordStore validation passes
        RecordStore(records)
