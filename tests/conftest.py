import pytest

from collection_engine import (
    CollectionKPICalculator, RecordStore, TransactionRecord, build_synthetic_store,
)

CURRENT = 'Jul25'


def make_record(branch='B1', product='P1', due_month='Jun25', due=100.0, actual=90.0,
                predicted=95.0, region='North', channel='SBI'):
    return TransactionRecord(
        branch=branch,
        region=region,
        channel=channel,
        product=product,
        due_month=due_month,
        due_amount=float(due),
        actual_collection=float(actual),
        predicted_collection=float(predicted),
    )


@pytest.fixture
def small_records():
    """Two regions, three branches, two products, two historical months and the current month."""
    return [
        make_record('B1', 'P1', 'May25', 100, 90, 95, region='North', channel='SBI'),
        make_record('B1', 'P2', 'May25', 50, 45, 60, region='North', channel='SBI'),
        make_record('B2', 'P1', 'May25', 200, 150, 180, region='North', channel='RETAIL'),
        make_record('B3', 'P1', 'May25', 300, 300, 290, region='South', channel='SBI'),
        make_record('B1', 'P1', 'Jun25', 100, 80, 90, region='North', channel='SBI'),
        make_record('B2', 'P2', 'Jun25', 100, 100, 100, region='North', channel='RETAIL'),
        make_record('B3', 'P2', 'Jun25', 400, 360, 380, region='South', channel='SBI'),
        # Current period: gap% of 20 (High), 10 (Medium), 2 (Low), -10 (Low)
        make_record('B1', 'P1', CURRENT, 1000, 0, 800, region='North', channel='SBI'),
        make_record('B2', 'P1', CURRENT, 500, 0, 450, region='North', channel='RETAIL'),
        make_record('B3', 'P1', CURRENT, 200, 0, 196, region='South', channel='SBI'),
        make_record('B3', 'P2', CURRENT, 100, 0, 110, region='South', channel='SBI'),
    ]


@pytest.fixture
def small_store(small_records):
    return RecordStore(small_records, current_period=CURRENT)


@pytest.fixture
def small_calculator(small_store):
    return CollectionKPICalculator(small_store)


@pytest.fixture(scope='session')
def synthetic_store():
    return build_synthetic_store(seed=7)


@pytest.fixture(scope='session')
def synthetic_calculator(synthetic_store):
    return CollectionKPICalculator(synthetic_store)
